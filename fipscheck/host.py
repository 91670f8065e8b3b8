"""
Host Capability Probe

Reports the version of the host's dynamically loadable OpenSSL libcrypto
and whether a FIPS provider can be selected from it.

The library has process-wide initialization side effects, so it is loaded
at most once per process, never from worker threads concurrently, and the
reading is cached. Nothing here switches the library into FIPS mode.
"""

import ctypes
import ctypes.util
import logging
import threading
from typing import Dict, Optional, Sequence

from .config import OPENSSL_LIBRARY
from .errors import ErrorKind
from .models import HostCapability

logger = logging.getLogger(__name__)

CANDIDATE_LIBRARIES = (
    "libcrypto.so.3",
    "libcrypto.so.1.1",
    "libcrypto.so.10",
    "libcrypto.so",
)

OPENSSL_VERSION = 0  # OPENSSL_VERSION / SSLEAY_VERSION

_lock = threading.Lock()
_cached: Dict[str, HostCapability] = {}


def _load_library(names: Sequence[str]) -> ctypes.CDLL:
    errors = []
    for name in names:
        try:
            return ctypes.CDLL(name)
        except OSError as exc:
            errors.append(f"{name}: {exc}")
    found = ctypes.util.find_library("crypto")
    if found and found not in names:
        try:
            return ctypes.CDLL(found)
        except OSError as exc:
            errors.append(f"{found}: {exc}")
    raise OSError("; ".join(errors) or "libcrypto not found")


def _version_text(lib: ctypes.CDLL) -> str:
    for symbol in ("OpenSSL_version", "SSLeay_version"):
        fn = getattr(lib, symbol, None)
        if fn is None:
            continue
        fn.argtypes = [ctypes.c_int]
        fn.restype = ctypes.c_char_p
        raw = fn(OPENSSL_VERSION)
        if raw:
            return raw.decode("ascii", "replace")
    raise OSError("library exports no version function")


def _fips_capable_v3(lib: ctypes.CDLL) -> bool:
    available = getattr(lib, "OSSL_PROVIDER_available", None)
    if available is not None:
        available.argtypes = [ctypes.c_void_p, ctypes.c_char_p]
        available.restype = ctypes.c_int
        if available(None, b"fips") == 1:
            return True

    fetch = getattr(lib, "EVP_MD_fetch", None)
    free = getattr(lib, "EVP_MD_free", None)
    if fetch is None or free is None:
        return False
    fetch.argtypes = [ctypes.c_void_p, ctypes.c_char_p, ctypes.c_char_p]
    fetch.restype = ctypes.c_void_p
    free.argtypes = [ctypes.c_void_p]
    free.restype = None
    md = fetch(None, b"SHA2-256", b"fips=yes")
    if not md:
        _clear_errors(lib)
        return False
    free(md)
    return True


def _fips_capable_legacy(lib: ctypes.CDLL) -> bool:
    fips_mode = getattr(lib, "FIPS_mode", None)
    if fips_mode is None:
        return False
    fips_mode.argtypes = []
    fips_mode.restype = ctypes.c_int
    return fips_mode() == 1


def _clear_errors(lib: ctypes.CDLL) -> None:
    clear = getattr(lib, "ERR_clear_error", None)
    if clear is not None:
        clear.argtypes = []
        clear.restype = None
        clear()


def read_host_capability(library: str = "") -> HostCapability:
    """
    Load libcrypto and take a capability reading. Uncached.

    Load failures are reported as fips_capable=False with a diagnostic.
    """
    names = (library,) if library else CANDIDATE_LIBRARIES
    try:
        lib = _load_library(names)
        version = _version_text(lib)
    except OSError as exc:
        logger.warning("host crypto library unavailable: %s", exc)
        return HostCapability(
            library_version="",
            fips_capable=False,
            diagnostic=f"{ErrorKind.HOST_UNAVAILABLE.value}: {exc}",
        )

    if hasattr(lib, "OSSL_PROVIDER_available") or hasattr(lib, "EVP_MD_fetch"):
        capable = _fips_capable_v3(lib)
    else:
        capable = _fips_capable_legacy(lib)
    diagnostic = None if capable else "no FIPS provider can be selected"
    return HostCapability(library_version=version, fips_capable=capable, diagnostic=diagnostic)


def probe_host(library: Optional[str] = None) -> HostCapability:
    """
    Cached host capability reading for this process, one per library name.

    None means FIPSCHECK_OPENSSL_LIBRARY, or the system search when that is
    empty. The first call for a name loads the library; later calls return
    the same reading even if the environment changed since.
    """
    name = OPENSSL_LIBRARY if library is None else library
    with _lock:
        if name not in _cached:
            _cached[name] = read_host_capability(name)
        return _cached[name]


def reset_host_cache() -> None:
    """Forget the cached reading (tests only)."""
    with _lock:
        _cached.clear()
