import base64
import binascii
import hashlib
import json
from typing import Any


def canonical_json(payload: Any) -> str:
    """Serialize ``payload`` deterministically: sorted keys, no whitespace."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def hash_payload(payload: Any) -> str:
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def sha256_bytes(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def digest_upload(
    content_base64: str | None, sha256: str | None, size: int | None
) -> tuple[str, int] | None:
    """Return ``(sha256, size)`` for an upload, hashing inline content when given."""
    if content_base64:
        try:
            content = base64.b64decode(content_base64, validate=True)
        except (binascii.Error, ValueError):
            return None
        return sha256_bytes(content), len(content)
    if sha256 and size is not None:
        return sha256.lower(), size
    return None
