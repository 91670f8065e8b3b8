"""
Binary Classifier

Decides whether a walker candidate is a Go executable: the file must have
a valid ELF executable header and carry the Go build info marker at its
expected place. Anything else is excluded from the compliance report.
"""

import logging
from typing import Optional

from .buildinfo import locate_buildinfo
from .elf import ELF_MAGIC, ElfFile
from .errors import ElfFormatError
from .models import BinaryKind, Candidate, ClassifiedBinary

logger = logging.getLogger(__name__)


def classify(candidate: Candidate) -> Optional[ClassifiedBinary]:
    """
    Classify a candidate.

    Returns a ClassifiedBinary for Go executables and None for everything
    else, including files that vanish or cannot be read.
    """
    try:
        with open(candidate.absolute_path, "rb") as f:
            if f.read(len(ELF_MAGIC)) != ELF_MAGIC:
                return None
            elf = ElfFile.parse(f)
            if not elf.info.is_executable:
                return None
            location = locate_buildinfo(elf)
    except ElfFormatError as exc:
        logger.debug("%s: not a usable ELF file: %s", candidate.relative_path, exc)
        return None
    except OSError as exc:
        logger.warning("%s: cannot read candidate: %s", candidate.relative_path, exc.strerror or exc)
        return None

    if location is None:
        return None
    return ClassifiedBinary(
        candidate=candidate,
        kind=BinaryKind.GO_BINARY,
        elf=elf.info,
        buildinfo_offset=location.offset,
    )
