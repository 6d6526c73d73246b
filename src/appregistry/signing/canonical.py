"""
Canonical serialization of registry documents.

The canonical form is what gets hashed, signed and stored next to the raw
document. Rules:

- the top-level ``signature`` key and every top-level key starting with
  ``_`` (transport markers) are removed
- object keys are sorted lexicographically at every nesting level
- arrays keep their order
- compact JSON, UTF-8, no insignificant whitespace
"""

from __future__ import annotations

import hashlib
from typing import Any

import orjson

SIGNATURE_FIELD = "signature"
TRANSPORT_PREFIX = "_"


def strip_transport_fields(doc: dict[str, Any]) -> dict[str, Any]:
    """Return a shallow copy without top-level ``_``-prefixed keys."""
    return {k: v for k, v in doc.items() if not k.startswith(TRANSPORT_PREFIX)}


def signable_view(doc: dict[str, Any]) -> dict[str, Any]:
    """Document as covered by the signature: no signature, no transport markers."""
    return {k: v for k, v in strip_transport_fields(doc).items() if k != SIGNATURE_FIELD}


def canonicalize(doc: dict[str, Any]) -> bytes:
    """Deterministic bytes for a document.

    Deep-equal documents produce identical bytes regardless of key order.

    Raises:
        TypeError: If the document holds values JSON cannot represent.
    """
    if not isinstance(doc, dict):
        msg = f"document must be a JSON object, got {type(doc).__name__}"
        raise TypeError(msg)
    try:
        return orjson.dumps(signable_view(doc), option=orjson.OPT_SORT_KEYS)
    except orjson.JSONEncodeError as e:
        raise TypeError(str(e)) from e


def canonical_text(doc: dict[str, Any]) -> str:
    """Canonical form as a string (the ``canonical_jcs`` field)."""
    return canonicalize(doc).decode("utf-8")


def canonical_digest(doc: dict[str, Any]) -> bytes:
    """SHA-256 of the canonical bytes. This is the Ed25519 message."""
    return hashlib.sha256(canonicalize(doc)).digest()
