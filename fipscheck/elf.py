"""
ELF Container Parsing

Minimal, bounded reader for the parts of the ELF format the scanner needs:
the file header (class, byte order, machine), the section header table with
section names, and the program header table. All reads are bounded so a
hostile or truncated file cannot make the scanner allocate unbounded memory.
"""

import platform
import struct
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Tuple

from .errors import ElfFormatError

ELF_MAGIC = b"\x7fELF"
EI_NIDENT = 16

ELFCLASS32 = 1
ELFCLASS64 = 2
ELFDATA2LSB = 1
ELFDATA2MSB = 2
EV_CURRENT = 1

ET_EXEC = 2
ET_DYN = 3

SHT_NOBITS = 8
SHN_UNDEF = 0
SHN_XINDEX = 0xFFFF

PT_LOAD = 1
PF_X = 0x1
PF_W = 0x2

# Upper bound for any header table or string table we load
MAX_TABLE_BYTES = 1 << 20

EM_386 = 3
EM_MIPS = 8
EM_PPC = 20
EM_PPC64 = 21
EM_S390 = 22
EM_ARM = 40
EM_X86_64 = 62
EM_AARCH64 = 183
EM_RISCV = 243
EM_LOONGARCH = 258

MACHINE_NAMES = {
    EM_386: "386",
    EM_MIPS: "mips",
    EM_PPC: "ppc",
    EM_PPC64: "ppc64",
    EM_S390: "s390x",
    EM_ARM: "arm",
    EM_X86_64: "amd64",
    EM_AARCH64: "arm64",
    EM_RISCV: "riscv64",
    EM_LOONGARCH: "loong64",
}

# platform.machine() spellings mapped to (e_machine, class, little endian)
HOST_TARGETS = {
    "x86_64": (EM_X86_64, ELFCLASS64, True),
    "amd64": (EM_X86_64, ELFCLASS64, True),
    "i386": (EM_386, ELFCLASS32, True),
    "i486": (EM_386, ELFCLASS32, True),
    "i586": (EM_386, ELFCLASS32, True),
    "i686": (EM_386, ELFCLASS32, True),
    "x86": (EM_386, ELFCLASS32, True),
    "aarch64": (EM_AARCH64, ELFCLASS64, True),
    "arm64": (EM_AARCH64, ELFCLASS64, True),
    "armv6l": (EM_ARM, ELFCLASS32, True),
    "armv7l": (EM_ARM, ELFCLASS32, True),
    "armv8l": (EM_ARM, ELFCLASS32, True),
    "arm": (EM_ARM, ELFCLASS32, True),
    "ppc64le": (EM_PPC64, ELFCLASS64, True),
    "ppc64": (EM_PPC64, ELFCLASS64, False),
    "ppc": (EM_PPC, ELFCLASS32, False),
    "s390x": (EM_S390, ELFCLASS64, False),
    "riscv64": (EM_RISCV, ELFCLASS64, True),
    "mips": (EM_MIPS, ELFCLASS32, False),
    "mipsel": (EM_MIPS, ELFCLASS32, True),
    "mips64": (EM_MIPS, ELFCLASS64, False),
    "mips64el": (EM_MIPS, ELFCLASS64, True),
    "loongarch64": (EM_LOONGARCH, ELFCLASS64, True),
}

_HEADER_FORMATS = {
    ELFCLASS32: "HHIIIIIHHHHHH",
    ELFCLASS64: "HHIQQQIHHHHHH",
}
_SECTION_FORMATS = {
    ELFCLASS32: "IIIIIIIIII",
    ELFCLASS64: "IIQQQQIIQQ",
}
_SEGMENT_FORMATS = {
    ELFCLASS32: "IIIIIIII",
    ELFCLASS64: "IIQQQQQQ",
}


def machine_name(machine: int) -> str:
    return MACHINE_NAMES.get(machine, f"machine_{machine}")


@dataclass(frozen=True)
class ElfTarget:
    """Machine, word size and byte order a binary needs from the host."""
    machine: int
    elf_class: int
    little_endian: bool

    def describe(self) -> str:
        bits = 64 if self.elf_class == ELFCLASS64 else 32
        order = "little" if self.little_endian else "big"
        return f"{machine_name(self.machine)} ({bits}-bit {order}-endian)"


def host_target() -> Optional[ElfTarget]:
    """ELF target of the running host, or None if unknown."""
    known = HOST_TARGETS.get(platform.machine().lower())
    return ElfTarget(*known) if known else None


@dataclass(frozen=True)
class ElfInfo:
    """Identification fields of an ELF file header."""
    elf_class: int
    little_endian: bool
    e_type: int
    machine: int

    @property
    def ptr_size(self) -> int:
        return 8 if self.elf_class == ELFCLASS64 else 4

    @property
    def machine_name(self) -> str:
        return machine_name(self.machine)

    @property
    def target(self) -> ElfTarget:
        return ElfTarget(self.machine, self.elf_class, self.little_endian)

    @property
    def is_executable(self) -> bool:
        return self.e_type in (ET_EXEC, ET_DYN)

    def to_dict(self):
        return {
            "class": 64 if self.elf_class == ELFCLASS64 else 32,
            "byte_order": "little" if self.little_endian else "big",
            "machine": self.machine_name,
        }


@dataclass(frozen=True)
class Section:
    name: str
    sh_type: int
    flags: int
    addr: int
    offset: int
    size: int


@dataclass(frozen=True)
class Segment:
    p_type: int
    flags: int
    offset: int
    vaddr: int
    filesz: int
    memsz: int


class ElfFile:
    """
    Parsed ELF header tables over an open binary file object.

    The file object is borrowed: callers own it and must keep it open
    while reading through this object.
    """

    def __init__(self, fileobj: BinaryIO, info: ElfInfo, file_size: int,
                 sections: List[Section], segments: List[Segment]):
        self._f = fileobj
        self.info = info
        self.file_size = file_size
        self.sections = sections
        self.segments = segments

    @classmethod
    def parse(cls, fileobj: BinaryIO) -> "ElfFile":
        fileobj.seek(0, 2)
        file_size = fileobj.tell()
        fileobj.seek(0)

        ident = fileobj.read(EI_NIDENT)
        if len(ident) < EI_NIDENT or ident[:4] != ELF_MAGIC:
            raise ElfFormatError("missing ELF magic")
        elf_class, data, version = ident[4], ident[5], ident[6]
        if elf_class not in _HEADER_FORMATS:
            raise ElfFormatError(f"unknown ELF class {elf_class}")
        if data not in (ELFDATA2LSB, ELFDATA2MSB):
            raise ElfFormatError(f"unknown ELF data encoding {data}")
        if version != EV_CURRENT:
            raise ElfFormatError(f"unknown ELF version {version}")

        endian = "<" if data == ELFDATA2LSB else ">"
        header_fmt = endian + _HEADER_FORMATS[elf_class]
        raw = fileobj.read(struct.calcsize(header_fmt))
        if len(raw) < struct.calcsize(header_fmt):
            raise ElfFormatError("truncated ELF header")
        (e_type, e_machine, _e_version, _e_entry, e_phoff, e_shoff, _e_flags,
         _e_ehsize, e_phentsize, e_phnum, e_shentsize, e_shnum,
         e_shstrndx) = struct.unpack(header_fmt, raw)

        info = ElfInfo(
            elf_class=elf_class,
            little_endian=(data == ELFDATA2LSB),
            e_type=e_type,
            machine=e_machine,
        )
        elf = cls(fileobj, info, file_size, [], [])
        elf.segments = elf._read_segments(endian, e_phoff, e_phentsize, e_phnum)
        elf.sections = elf._read_sections(endian, e_shoff, e_shentsize, e_shnum, e_shstrndx)
        return elf

    def read(self, offset: int, size: int) -> bytes:
        """Read exactly ``size`` bytes at ``offset`` or raise."""
        if offset < 0 or size < 0 or offset + size > self.file_size:
            raise ElfFormatError(f"read of {size} bytes at {offset:#x} is out of bounds")
        self._f.seek(offset)
        data = self._f.read(size)
        if len(data) != size:
            raise ElfFormatError(f"short read at {offset:#x}")
        return data

    def section(self, name: str) -> Optional[Section]:
        for section in self.sections:
            if section.name == name:
                return section
        return None

    def vaddr_to_offset(self, addr: int) -> Tuple[int, int]:
        """
        Translate a virtual address to (file offset, bytes available).

        Raises ElfFormatError if no file-backed mapping covers the address.
        """
        for seg in self.segments:
            if seg.p_type == PT_LOAD and seg.vaddr <= addr < seg.vaddr + seg.filesz:
                delta = addr - seg.vaddr
                return seg.offset + delta, seg.filesz - delta
        for sec in self.sections:
            if sec.sh_type != SHT_NOBITS and sec.addr and sec.addr <= addr < sec.addr + sec.size:
                delta = addr - sec.addr
                return sec.offset + delta, sec.size - delta
        raise ElfFormatError(f"address {addr:#x} is not mapped from the file")

    def read_vaddr(self, addr: int, size: int) -> bytes:
        offset, available = self.vaddr_to_offset(addr)
        if size > available:
            raise ElfFormatError(f"read of {size} bytes at address {addr:#x} crosses mapping end")
        return self.read(offset, size)

    def _read_table(self, offset: int, entsize: int, count: int, minsize: int) -> List[bytes]:
        if count == 0 or offset == 0:
            return []
        if entsize < minsize:
            raise ElfFormatError(f"header entry size {entsize} is too small")
        total = entsize * count
        if total > MAX_TABLE_BYTES:
            raise ElfFormatError("header table is too large")
        blob = self.read(offset, total)
        return [blob[i * entsize:i * entsize + minsize] for i in range(count)]

    def _read_segments(self, endian: str, phoff: int, phentsize: int, phnum: int) -> List[Segment]:
        fmt = endian + _SEGMENT_FORMATS[self.info.elf_class]
        segments = []
        for entry in self._read_table(phoff, phentsize, phnum, struct.calcsize(fmt)):
            fields = struct.unpack(fmt, entry)
            if self.info.elf_class == ELFCLASS64:
                p_type, p_flags, p_offset, p_vaddr, _p_paddr, p_filesz, p_memsz, _p_align = fields
            else:
                p_type, p_offset, p_vaddr, _p_paddr, p_filesz, p_memsz, p_flags, _p_align = fields
            segments.append(Segment(p_type, p_flags, p_offset, p_vaddr, p_filesz, p_memsz))
        return segments

    def _read_sections(self, endian: str, shoff: int, shentsize: int, shnum: int,
                       shstrndx: int) -> List[Section]:
        fmt = endian + _SECTION_FORMATS[self.info.elf_class]
        entry_size = struct.calcsize(fmt)
        if shoff == 0:
            return []

        # Extended numbering keeps the real counts in section 0
        if shnum == 0 or shstrndx == SHN_XINDEX:
            first = self._read_table(shoff, shentsize, 1, entry_size)[0]
            (_n, _t, _f, _a, _o, sh0_size, sh0_link, _i, _al, _e) = struct.unpack(fmt, first)
            if shnum == 0:
                shnum = sh0_size
            if shstrndx == SHN_XINDEX:
                shstrndx = sh0_link

        raw = []
        for entry in self._read_table(shoff, shentsize, shnum, entry_size):
            (sh_name, sh_type, sh_flags, sh_addr, sh_offset, sh_size,
             _sh_link, _sh_info, _sh_addralign, _sh_entsize) = struct.unpack(fmt, entry)
            raw.append((sh_name, sh_type, sh_flags, sh_addr, sh_offset, sh_size))

        names = b""
        if shstrndx != SHN_UNDEF and shstrndx < len(raw):
            _, str_type, _, _, str_offset, str_size = raw[shstrndx]
            if str_type != SHT_NOBITS:
                names = self.read(str_offset, min(str_size, MAX_TABLE_BYTES))

        sections = []
        for sh_name, sh_type, sh_flags, sh_addr, sh_offset, sh_size in raw:
            sections.append(Section(
                name=_cstring(names, sh_name),
                sh_type=sh_type,
                flags=sh_flags,
                addr=sh_addr,
                offset=sh_offset,
                size=sh_size,
            ))
        return sections


def _cstring(table: bytes, offset: int) -> str:
    if offset >= len(table):
        return ""
    end = table.find(b"\0", offset)
    if end < 0:
        end = len(table)
    return table[offset:end].decode("ascii", "replace")
