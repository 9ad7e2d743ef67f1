"""
Record checksums.

The codec stores a short SHA256 digest of each record's ``data`` object next
to it. A torn write or a hand edit changes the digest, so the record is
reported as corrupt on read instead of being loaded with wrong content.

Dicts are hashed in canonical form (sorted keys, no whitespace, ASCII
escapes), so the digest does not depend on how the file is indented.
"""

import hashlib
import hmac
import json
from typing import Any, Dict, Optional, Union

# 16 hex characters = 64 bits, enough to catch accidental damage
DEFAULT_DIGEST_LENGTH = 16


def canonical_bytes(data: Dict[str, Any]) -> bytes:
    """Serialize a dict into the byte form its checksum is computed over."""
    return json.dumps(data, sort_keys=True, separators=(',', ':')).encode('ascii')


def compute_checksum(data: Union[bytes, Dict[str, Any]], truncate: int = DEFAULT_DIGEST_LENGTH) -> str:
    """
    Digest of record data.

    Args:
        data: A record's data dict, or raw bytes
        truncate: Hex characters to keep; 0 keeps the full 64

    Raises:
        TypeError: If data is neither a dict nor bytes
    """
    if isinstance(data, dict):
        payload = canonical_bytes(data)
    elif isinstance(data, bytes):
        payload = data
    else:
        raise TypeError(f"Cannot checksum {type(data).__name__}; expected dict or bytes")

    digest = hashlib.sha256(payload).hexdigest()
    return digest[:truncate] if truncate else digest


def verify_checksum(
    data: Union[bytes, Dict[str, Any]],
    expected: Optional[str],
    truncate: int = DEFAULT_DIGEST_LENGTH,
) -> bool:
    """
    Check data against a stored digest.

    A missing or non-string digest never matches.
    """
    if not isinstance(expected, str):
        return False
    return hmac.compare_digest(compute_checksum(data, truncate=truncate), expected)
