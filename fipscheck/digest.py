"""
Report Digests

Canonical JSON encoding and SHA-256 digests of scan reports. Two scans of
the same tree produce the same digest once timing-sensitive fields are
masked, which makes report drift easy to detect.

Canonical form:
- Object keys sorted lexicographically
- No whitespace between tokens
- UTF-8 encoding, no BOM
- Enums encoded by value
"""

import hashlib
import json
from enum import Enum
from typing import Any, Union


def canonicalize(obj: Any) -> bytes:
    """Encode ``obj`` as canonical JSON bytes."""
    return json.dumps(
        _canonicalize_value(obj),
        separators=(',', ':'),
        ensure_ascii=False,
        sort_keys=True,
    ).encode('utf-8')


def _canonicalize_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, dict):
        return {str(_canonicalize_value(k)): _canonicalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonicalize_value(item) for item in value]
    raise ValueError(f"Cannot canonicalize type: {type(value)}")


def sha256_hash(data: Union[bytes, str]) -> str:
    """SHA-256 digest in the form "sha256:<lowercase hex>"."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def content_digest(obj: Any) -> str:
    """Digest of the canonical encoding of ``obj``."""
    return sha256_hash(canonicalize(obj))
