"""
Synthetic test fixtures.

No Go toolchain is needed: the helpers here lay out minimal ELF64
executables carrying Go build info in either the inline (Go 1.18+) or the
legacy pointer format, write them into temporary scan trees, and provide a
probe that runs shell snippets in place of the binaries.
"""

import os
import struct
import threading
from typing import Dict, Iterable, Optional, Tuple

from fipscheck.elf import ELFCLASS64, EM_X86_64, ET_EXEC, ElfTarget, host_target
from fipscheck.probe import RuntimeProbe

BUILDINFO_MAGIC = b"\xff Go buildinf:"
SENTINEL_START = bytes.fromhex("3077af0c9274080241e1c107e6d618e6")
SENTINEL_END = bytes.fromhex("f932433186182072008242104116d8f2")

DATA_OFFSET = 0x100
VADDR_BASE = 0x400000

SHT_PROGBITS = 1
SHT_STRTAB = 3
PT_LOAD = 1
PF_W = 0x2
PF_R = 0x4


def native_machine() -> int:
    target = host_target()
    return target.machine if target else EM_X86_64


def native_target() -> ElfTarget:
    """Target of the images build_elf lays out for this host."""
    return ElfTarget(native_machine(), ELFCLASS64, True)


def uvarint(value: int) -> bytes:
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def modinfo_text(
    module: str = "example.com/app",
    cgo: Optional[bool] = True,
    experiment: Optional[str] = "systemcrypto",
    deps: Iterable[Tuple[str, str]] = (),
    extra_lines: Iterable[str] = (),
) -> str:
    lines = [f"path\t{module}", f"mod\t{module}\t(devel)\t"]
    for dep, version in deps:
        lines.append(f"dep\t{dep}\t{version}\th1:fakesum=")
    lines.append("build\t-compiler=gc")
    if cgo is not None:
        lines.append(f"build\tCGO_ENABLED={'1' if cgo else '0'}")
    if experiment:
        lines.append(f"build\tGOEXPERIMENT={experiment}")
    lines.extend(extra_lines)
    return "\n".join(lines) + "\n"


def frame(text: str) -> bytes:
    return SENTINEL_START + text.encode("utf-8") + SENTINEL_END


def inline_buildinfo(version: str, mod: bytes) -> bytes:
    v = version.encode("utf-8")
    header = BUILDINFO_MAGIC + bytes([8, 0x2]) + bytes(16)
    return header + uvarint(len(v)) + v + uvarint(len(mod)) + mod


def legacy_buildinfo(version: str, mod: bytes) -> bytes:
    """Pointer format; string headers and data follow the 32-byte header."""
    base = VADDR_BASE + DATA_OFFSET
    v = version.encode("utf-8")
    version_data = base + 64
    mod_data = version_data + len(v)
    header = BUILDINFO_MAGIC + bytes([8, 0x0]) + struct.pack("<QQ", base + 32, base + 48)
    return (header
            + struct.pack("<QQ", version_data, len(v))
            + struct.pack("<QQ", mod_data, len(mod))
            + v + mod)


def build_elf(
    region: bytes,
    machine: Optional[int] = None,
    e_type: int = ET_EXEC,
    with_section: bool = True,
    with_segment: bool = True,
    section_name: str = ".go.buildinfo",
) -> bytes:
    """
    ELF64 little-endian image with ``region`` at DATA_OFFSET.

    The region is exposed as a named section and as a writable PT_LOAD
    segment mapped at VADDR_BASE + DATA_OFFSET.
    """
    machine = native_machine() if machine is None else machine
    vaddr = VADDR_BASE + DATA_OFFSET

    phdrs = b""
    if with_segment:
        phdrs = struct.pack("<IIQQQQQQ", PT_LOAD, PF_R | PF_W, DATA_OFFSET, vaddr, vaddr,
                            len(region), len(region), 0x1000)

    body = bytearray(DATA_OFFSET)
    body[64:64 + len(phdrs)] = phdrs
    body += region

    shoff = 0
    shnum = 0
    shstrndx = 0
    if with_section:
        name = section_name.encode("ascii")
        shstrtab = b"\0" + name + b"\0" + b".shstrtab\0"
        shstrtab_offset = len(body)
        body += shstrtab
        while len(body) % 8:
            body.append(0)
        shoff = len(body)
        body += bytes(64)
        body += struct.pack("<IIQQQQIIQQ", 1, SHT_PROGBITS, 0x3, vaddr, DATA_OFFSET,
                            len(region), 0, 0, 16, 0)
        body += struct.pack("<IIQQQQIIQQ", len(name) + 2, SHT_STRTAB, 0, 0, shstrtab_offset,
                            len(shstrtab), 0, 0, 1, 0)
        shnum = 3
        shstrndx = 2

    ident = b"\x7fELF" + bytes([2, 1, 1, 0]) + bytes(8)
    header = ident + struct.pack(
        "<HHIQQQIHHHHHH",
        e_type, machine, 1, 0x401000,
        64 if with_segment else 0, shoff, 0,
        64, 56, 1 if with_segment else 0, 64, shnum, shstrndx,
    )
    body[:64] = header
    return bytes(body)


def go_binary(
    version: str = "go1.22.1",
    legacy: bool = False,
    machine: Optional[int] = None,
    **modinfo,
) -> bytes:
    """A complete synthetic Go executable image."""
    mod = frame(modinfo_text(**modinfo))
    region = legacy_buildinfo(version, mod) if legacy else inline_buildinfo(version, mod)
    return build_elf(region, machine=machine)


def plain_elf(machine: Optional[int] = None) -> bytes:
    """ELF executable without Go build info."""
    return build_elf(b"\x00" * 64, machine=machine)


def write_file(root: str, relpath: str, data: bytes, mode: int = 0o755) -> str:
    path = os.path.join(root, relpath)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)
    os.chmod(path, mode)
    return path


def write_script(root: str, relpath: str, body: str) -> str:
    return write_file(root, relpath, ("#!/bin/sh\n" + body + "\n").encode("utf-8"))


class ScriptedProbe(RuntimeProbe):
    """
    Runtime probe that runs a shell snippet instead of the binary.

    The snippet is chosen by the binary's file name. Peak concurrency is
    tracked so tests can check the worker bound.
    """

    def __init__(self, scripts: Optional[Dict[str, str]] = None, default: str = "exit 0", **kwargs):
        kwargs.setdefault("target", None)
        super().__init__(**kwargs)
        self.scripts = scripts or {}
        self.default = default
        self._lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.calls = []

    def command(self, path):
        return ["/bin/sh", "-c", self.scripts.get(os.path.basename(path), self.default)]

    def run(self, path, target=None, cancel_event=None, timeout=None):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
            self.calls.append(os.path.basename(path))
        try:
            return super().run(path, target, cancel_event, timeout)
        finally:
            with self._lock:
                self.active -= 1
