"""HMAC-SHA256 signatures over canonical JSON."""
from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

SIGNATURE_FIELD = "signature"
DEFAULT_SNAPSHOT_SECRET = "dev-cart-snapshot-secret"


def canonical_json(document: dict[str, Any]) -> str:
    """Sorted-key compact JSON of every field except the signature."""
    unsigned = {k: v for k, v in document.items() if k != SIGNATURE_FIELD}
    return json.dumps(unsigned, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sign_document(document: dict[str, Any], secret: str) -> str:
    return hmac.new(
        secret.encode(), canonical_json(document).encode(), hashlib.sha256
    ).hexdigest()


def verify_document(document: dict[str, Any], secret: str) -> bool:
    signature = document.get(SIGNATURE_FIELD)
    if not isinstance(signature, str) or not signature:
        return False
    return hmac.compare_digest(signature, sign_document(document, secret))
