"""
Go Build Info Extraction

Locates and decodes the build information block the Go linker writes into
every executable (``go version -m`` reads the same data).

Layout of the 32-byte header:
    [0:14]   magic "\\xff Go buildinf:"
    [14]     pointer size (4 or 8)
    [15]     flags: bit 0 big-endian pointers, bit 1 inline strings
    [16:32]  legacy format only: pointers to the version and module
             info string headers

With inline strings (Go 1.18+), two uvarint length-prefixed strings follow
the header: the runtime version and the framed module info text.
"""

import logging
import struct
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, List, Optional, Tuple

from .config import DELEGATED_CRYPTO_TOKEN
from .elf import PF_W, PF_X, PT_LOAD, SHT_NOBITS, ElfFile
from .errors import BuildInfoError, ElfFormatError
from .models import BinaryMetadata

logger = logging.getLogger(__name__)

BUILDINFO_MAGIC = b"\xff Go buildinf:"
BUILDINFO_SECTION = ".go.buildinfo"
BUILDINFO_ALIGN = 16
BUILDINFO_HEADER_SIZE = 32
SEARCH_WINDOW = 64 * 1024

FLAG_BIG_ENDIAN = 0x1
FLAG_VERSION_INLINE = 0x2

# Module info is framed by 16-byte sentinels
MODINFO_SENTINEL_SIZE = 16
MAX_STRING_SIZE = 1 << 20
MAX_VARINT_BYTES = 10

TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class BuildInfoLocation:
    """File offset of a validated build info header."""
    offset: int
    ptr_size: int
    flags: int

    @property
    def inline(self) -> bool:
        return bool(self.flags & FLAG_VERSION_INLINE)


@dataclass
class ModuleInfo:
    """Parsed module info text (the body of ``go version -m``)."""
    go_version: str = ""
    path: str = ""
    main: Tuple[str, ...] = ()
    deps: List[Tuple[str, ...]] = field(default_factory=list)
    settings: Dict[str, str] = field(default_factory=dict)


def _search_region(elf: ElfFile) -> Optional[Tuple[int, int]]:
    """File offset and size of the region that holds the header."""
    section = elf.section(BUILDINFO_SECTION)
    if section is not None and section.sh_type != SHT_NOBITS:
        return section.offset, section.size
    for seg in elf.segments:
        if seg.p_type == PT_LOAD and seg.flags & (PF_X | PF_W) == PF_W:
            return seg.offset, seg.filesz
    return None


def locate_buildinfo(elf: ElfFile) -> Optional[BuildInfoLocation]:
    """
    Find the build info header in the first 64 KiB of its region.

    Only 16-byte aligned matches with a complete header and a sane
    pointer size count.
    """
    region = _search_region(elf)
    if region is None:
        return None
    start, size = region
    size = min(size, SEARCH_WINDOW, max(0, elf.file_size - start))
    if size < BUILDINFO_HEADER_SIZE:
        return None
    data = elf.read(start, size)

    pos = 0
    while True:
        i = data.find(BUILDINFO_MAGIC, pos)
        if i < 0 or len(data) - i < BUILDINFO_HEADER_SIZE:
            return None
        if i % BUILDINFO_ALIGN == 0:
            ptr_size, flags = data[i + 14], data[i + 15]
            if ptr_size in (4, 8):
                return BuildInfoLocation(offset=start + i, ptr_size=ptr_size, flags=flags)
        pos = (i + BUILDINFO_ALIGN) & ~(BUILDINFO_ALIGN - 1)


def decode_uvarint(data: bytes) -> Tuple[int, int]:
    """Decode an unsigned LEB128 varint. Returns (value, bytes consumed)."""
    value = 0
    shift = 0
    for i, byte in enumerate(data):
        if i >= MAX_VARINT_BYTES:
            break
        value |= (byte & 0x7F) << shift
        if byte < 0x80:
            return value, i + 1
        shift += 7
    raise BuildInfoError("truncated or overlong varint")


def _read_inline_string(elf: ElfFile, offset: int) -> Tuple[bytes, int]:
    head = elf.read(offset, min(MAX_VARINT_BYTES, elf.file_size - offset))
    length, used = decode_uvarint(head)
    if length > MAX_STRING_SIZE:
        raise BuildInfoError(f"string length {length} exceeds limit")
    return elf.read(offset + used, length), offset + used + length


def _read_pointer_string(elf: ElfFile, addr: int, ptr_size: int, endian: str) -> bytes:
    code = "Q" if ptr_size == 8 else "I"
    header = elf.read_vaddr(addr, 2 * ptr_size)
    data_addr, length = struct.unpack(endian + code * 2, header)
    if length > MAX_STRING_SIZE:
        raise BuildInfoError(f"string length {length} exceeds limit")
    if length == 0:
        return b""
    return elf.read_vaddr(data_addr, length)


def read_raw_buildinfo(elf: ElfFile, location: BuildInfoLocation) -> Tuple[str, str]:
    """Return (runtime version, module info text) with framing removed."""
    header = elf.read(location.offset, BUILDINFO_HEADER_SIZE)
    if header[:len(BUILDINFO_MAGIC)] != BUILDINFO_MAGIC:
        raise BuildInfoError("build info magic moved or vanished")

    if location.inline:
        version, next_offset = _read_inline_string(elf, location.offset + BUILDINFO_HEADER_SIZE)
        mod, _ = _read_inline_string(elf, next_offset)
    else:
        ptr = location.ptr_size
        endian = ">" if location.flags & FLAG_BIG_ENDIAN else "<"
        fmt = endian + ("Q" if ptr == 8 else "I")
        version_addr = struct.unpack(fmt, header[16:16 + ptr])[0]
        mod_addr = struct.unpack(fmt, header[16 + ptr:16 + 2 * ptr])[0]
        version = _read_pointer_string(elf, version_addr, ptr, endian)
        mod = _read_pointer_string(elf, mod_addr, ptr, endian)

    if not version:
        raise BuildInfoError("empty runtime version")

    # Sentinels are arbitrary bytes, strip them before decoding
    sentinel = MODINFO_SENTINEL_SIZE
    if len(mod) >= 2 * sentinel + 1 and mod[-(sentinel + 1)] == ord("\n"):
        mod = mod[sentinel:-sentinel]
    else:
        mod = b""
    try:
        return version.decode("utf-8"), mod.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise BuildInfoError(f"undecodable build info: {exc}") from exc


# ============================================================
# Module info text
# ============================================================

_SIMPLE_ESCAPES = {
    "a": "\a", "b": "\b", "f": "\f", "n": "\n", "r": "\r",
    "t": "\t", "v": "\v", "\\": "\\", "'": "'", '"': '"',
}


def go_quoted_prefix(s: str) -> str:
    """Return the leading Go double-quoted literal of ``s``."""
    if not s.startswith('"'):
        raise BuildInfoError("expected quoted string")
    i = 1
    while i < len(s):
        ch = s[i]
        if ch == "\\":
            i += 2
            continue
        if ch == '"':
            return s[:i + 1]
        if ch == "\n":
            break
        i += 1
    raise BuildInfoError("unterminated quoted string")


def go_unquote(literal: str) -> str:
    """Unquote a Go double-quoted or backquoted string literal."""
    if len(literal) >= 2 and literal[0] == literal[-1] == "`":
        return literal[1:-1]
    if len(literal) < 2 or literal[0] != '"' or literal[-1] != '"':
        raise BuildInfoError(f"invalid quoted string {literal!r}")
    body = literal[1:-1]
    out: List[str] = []
    raw = bytearray()

    def flush():
        if raw:
            out.append(raw.decode("utf-8", "replace"))
            raw.clear()

    i = 0
    while i < len(body):
        ch = body[i]
        if ch != "\\":
            flush()
            out.append(ch)
            i += 1
            continue
        if i + 1 >= len(body):
            raise BuildInfoError("dangling escape")
        esc = body[i + 1]
        if esc in _SIMPLE_ESCAPES:
            flush()
            out.append(_SIMPLE_ESCAPES[esc])
            i += 2
        elif esc == "x":
            raw.append(_hex_value(body[i + 2:i + 4], 2))
            i += 4
        elif esc in "uU":
            width = 4 if esc == "u" else 8
            flush()
            out.append(chr(_hex_value(body[i + 2:i + 2 + width], width)))
            i += 2 + width
        elif esc in "01234567":
            digits = body[i + 1:i + 4]
            if len(digits) != 3 or any(d not in "01234567" for d in digits):
                raise BuildInfoError("invalid octal escape")
            value = int(digits, 8)
            if value > 0xFF:
                raise BuildInfoError("octal escape out of range")
            raw.append(value)
            i += 4
        else:
            raise BuildInfoError(f"unknown escape \\{esc}")
    flush()
    return "".join(out)


def _hex_value(digits: str, width: int) -> int:
    if len(digits) != width:
        raise BuildInfoError("truncated hex escape")
    try:
        return int(digits, 16)
    except ValueError as exc:
        raise BuildInfoError("invalid hex escape") from exc


def _parse_setting(kv: str) -> Tuple[str, str]:
    if not kv:
        raise BuildInfoError("build line missing '='")
    if kv.startswith('"'):
        quoted = go_quoted_prefix(kv)
        key = go_unquote(quoted)
        rest = kv[len(quoted):]
        if not rest.startswith("="):
            raise BuildInfoError(f"missing '=' after key {key!r}")
        value = rest[1:]
    else:
        key, sep, value = kv.partition("=")
        if not sep:
            raise BuildInfoError(f"missing '=' after key {key!r}")
    if not key:
        raise BuildInfoError("empty build setting key")
    if value.startswith('"'):
        value = go_unquote(value)
    return key, value


def parse_modinfo(text: str) -> ModuleInfo:
    """
    Parse module info lines.

    A trailing line without newline is ignored. Unknown line types are
    skipped so newer toolchains do not make binaries unreadable.
    """
    info = ModuleInfo()
    last_module: Optional[str] = None
    lines = text.split("\n")
    for line in lines[:-1]:
        if not line:
            continue
        tag, sep, rest = line.partition("\t")
        if not sep:
            raise BuildInfoError(f"malformed module info line {line!r}")
        if tag == "go":
            info.go_version = rest
        elif tag == "path":
            info.path = rest
        elif tag in ("mod", "dep"):
            columns = tuple(rest.split("\t"))
            if len(columns) not in (2, 3):
                raise BuildInfoError(f"expected 2 or 3 columns in {tag} line")
            if tag == "mod":
                info.main = columns
                last_module = "mod"
            else:
                info.deps.append(columns)
                last_module = "dep"
        elif tag == "=>":
            columns = tuple(rest.split("\t"))
            if len(columns) not in (2, 3) or last_module is None:
                raise BuildInfoError("replacement without module")
            if last_module == "mod":
                info.main = info.main + ("=>",) + columns
            else:
                info.deps[-1] = info.deps[-1] + ("=>",) + columns
        elif tag == "build":
            key, value = _parse_setting(rest)
            info.settings[key] = value
        else:
            logger.debug("skipping unknown module info line type %r", tag)
    return info


def experiment_tokens(settings: Dict[str, str]) -> List[str]:
    raw = settings.get("GOEXPERIMENT", "")
    return [token.strip() for token in raw.split(",") if token.strip()]


def build_metadata(version: str, info: ModuleInfo,
                   token: str = DELEGATED_CRYPTO_TOKEN) -> BinaryMetadata:
    """Derive the compliance-relevant fields from parsed build info."""
    experiments = experiment_tokens(info.settings)
    cgo = info.settings.get("CGO_ENABLED", "").strip().lower()
    return BinaryMetadata(
        runtime_version=version,
        module_path=info.main[0] if info.main else info.path,
        package_path=info.path,
        native_interop_enabled=cgo in TRUE_VALUES,
        uses_delegated_crypto=token in experiments,
        build_settings=dict(info.settings),
        experiments=experiments,
        dependencies=["@".join(dep[:2]) for dep in info.deps],
    )


def location_at(elf: ElfFile, offset: int) -> BuildInfoLocation:
    """Re-read and validate the header at a previously located offset."""
    header = elf.read(offset, BUILDINFO_HEADER_SIZE)
    if header[:len(BUILDINFO_MAGIC)] != BUILDINFO_MAGIC or header[14] not in (4, 8):
        raise BuildInfoError(f"no build info header at {offset:#x}")
    return BuildInfoLocation(offset=offset, ptr_size=header[14], flags=header[15])


def extract_metadata(path: str, offset: Optional[int] = None,
                     token: str = DELEGATED_CRYPTO_TOKEN) -> BinaryMetadata:
    """
    Read the build metadata of the Go executable at ``path``.

    ``offset`` is the header position found by the classifier; without it
    the header is searched again. The file is opened for the duration of
    the call only. Raises BuildInfoError for anything that cannot be
    decoded.
    """
    try:
        with open(path, "rb") as f:
            return _extract(f, offset, token)
    except ElfFormatError as exc:
        raise BuildInfoError(str(exc)) from exc
    except OSError as exc:
        raise BuildInfoError(f"cannot read {path}: {exc.strerror or exc}") from exc


def _extract(f: BinaryIO, offset: Optional[int], token: str) -> BinaryMetadata:
    elf = ElfFile.parse(f)
    if offset is None:
        location = locate_buildinfo(elf)
        if location is None:
            raise BuildInfoError("no Go build info found")
    else:
        location = location_at(elf, offset)
    version, mod_text = read_raw_buildinfo(elf, location)
    return build_metadata(version, parse_modinfo(mod_text), token)
