"""
Ed25519 signature verification and the ownership predicate.

Signed message: SHA-256 over the canonical bytes of the document (see
appregistry.signing.canonical). Keys and signatures are base64url, padding
optional, with an optional ``ed25519:`` or ``base64:`` prefix. Standard
base64 is accepted too.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import ed25519

from appregistry.contracts.entity import EntityKind
from appregistry.errors import InvalidSignatureError
from appregistry.signing.canonical import SIGNATURE_FIELD, canonical_digest

if TYPE_CHECKING:
    from appregistry.config import SignatureConfig
    from appregistry.contracts.entity import Entity

logger = logging.getLogger(__name__)

ALGORITHM = "ed25519"
PUBLIC_KEY_SIZE = 32
SIGNATURE_SIZE = 64
_KEY_PREFIXES = ("ed25519:", "base64:")


def _b64decode(value: str, what: str) -> bytes:
    text = value.strip()
    for prefix in _KEY_PREFIXES:
        if text.lower().startswith(prefix):
            text = text[len(prefix) :]
            break
    text = text.rstrip("=").replace("-", "+").replace("_", "/")
    text += "=" * (-len(text) % 4)
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidSignatureError(f"{what} is not valid base64") from e


def b64url_encode(raw: bytes) -> str:
    """Unpadded base64url, the form produced by sign_document."""
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_public_key(value: str) -> bytes:
    """Decode a public key string to its 32 raw bytes.

    Raises:
        InvalidSignatureError: On bad encoding or wrong length.
    """
    raw = _b64decode(value, "public key")
    if len(raw) != PUBLIC_KEY_SIZE:
        raise InvalidSignatureError(
            f"public key must be {PUBLIC_KEY_SIZE} bytes, got {len(raw)}"
        )
    return raw


def decode_private_key(value: str) -> bytes:
    """Decode a raw 32-byte Ed25519 private key (same encoding as public keys)."""
    raw = _b64decode(value, "private key")
    if len(raw) != PUBLIC_KEY_SIZE:
        raise InvalidSignatureError(
            f"private key must be {PUBLIC_KEY_SIZE} bytes, got {len(raw)}"
        )
    return raw


def decode_signature(value: str) -> bytes:
    """Decode a signature string to its 64 raw bytes.

    Raises:
        InvalidSignatureError: On bad encoding or wrong length.
    """
    raw = _b64decode(value, "signature")
    if len(raw) != SIGNATURE_SIZE:
        raise InvalidSignatureError(
            f"signature must be {SIGNATURE_SIZE} bytes, got {len(raw)}"
        )
    return raw


def generate_keypair() -> tuple[bytes, bytes]:
    """Fresh Ed25519 keypair as (private_raw, public_raw)."""
    sk = ed25519.Ed25519PrivateKey.generate()
    return sk.private_bytes_raw(), sk.public_key().public_bytes_raw()


def sign_document(
    doc: dict[str, Any],
    private_key: bytes,
    signed_at: datetime | None = None,
) -> dict[str, Any]:
    """
    Return a signed copy of a document.

    Any existing signature is replaced. The signature block is not part of
    the signed bytes, so ``signed_at`` is informational only.

    Args:
        doc: Manifest or bundle document.
        private_key: 32-byte raw Ed25519 private key.
        signed_at: Timestamp to record. Defaults to now (UTC).
    """
    sk = ed25519.Ed25519PrivateKey.from_private_bytes(private_key)
    sig = sk.sign(canonical_digest(doc))
    when = (signed_at or datetime.now(UTC)).astimezone(UTC)
    signed = dict(doc)
    signed[SIGNATURE_FIELD] = {
        "alg": ALGORITHM,
        "pubkey": b64url_encode(sk.public_key().public_bytes_raw()),
        "sig": b64url_encode(sig),
        "signed_at": when.strftime("%Y-%m-%dT%H:%M:%SZ"),
    }
    return signed


def verify_document(doc: dict[str, Any], pubkey: str, sig: str) -> None:
    """Check a detached signature over a document.

    Raises:
        InvalidSignatureError: If decoding fails or the signature does not match.
    """
    key = ed25519.Ed25519PublicKey.from_public_bytes(decode_public_key(pubkey))
    try:
        key.verify(decode_signature(sig), canonical_digest(doc))
    except InvalidSignature as e:
        raise InvalidSignatureError("signature does not match document") from e


def verify_entity(entity: Entity, config: SignatureConfig) -> None:
    """
    Verify an entity's signature against the configured policy.

    Unsigned entities pass only when the policy allows unsigned documents
    of their kind. A present signature must always validate.

    Raises:
        InvalidSignatureError: On any verification failure.
    """
    signature = entity.signature
    if signature is None:
        allowed = (
            config.allow_unsigned_bundles
            if entity.kind is EntityKind.BUNDLE
            else config.allow_unsigned_manifests
        )
        if not allowed:
            raise InvalidSignatureError(f"unsigned {entity.kind.value}s are not accepted")
        return

    if signature.alg.lower() != ALGORITHM:
        raise InvalidSignatureError(f"unsupported signature algorithm: {signature.alg!r}")

    verify_document(entity.document, signature.pubkey, signature.sig)
    logger.debug(
        "Signature verified",
        extra={"package_id": entity.id, "version": entity.version},
    )


@dataclass(frozen=True)
class Open:
    """Any key may publish."""


@dataclass(frozen=True)
class RestrictedTo:
    """Only the listed raw public keys may publish."""

    keys: frozenset[bytes]

    def allows(self, raw_key: bytes) -> bool:
        return raw_key in self.keys


OwnershipPolicy = Open | RestrictedTo


def _decode_owner(value: str) -> bytes | None:
    try:
        return decode_public_key(value)
    except InvalidSignatureError:
        logger.warning("Ignoring undecodable owner key")
        return None


def ownership_policy_for(existing: Entity) -> OwnershipPolicy:
    """Derive who may publish further versions of an existing package.

    Non-empty ``owners`` wins, then the signing key, else the package is open.
    """
    if existing.owners:
        keys = {_decode_owner(k) for k in existing.owners}
        return RestrictedTo(frozenset(k for k in keys if k is not None))
    if existing.pubkey is not None:
        key = _decode_owner(existing.pubkey)
        return RestrictedTo(frozenset({key} if key is not None else ()))
    return Open()


def is_allowed_owner(existing: Entity, incoming_key: str | None) -> bool:
    """True if ``incoming_key`` may publish to the package of ``existing``."""
    policy = ownership_policy_for(existing)
    if isinstance(policy, Open):
        return True
    if incoming_key is None:
        return False
    try:
        raw = decode_public_key(incoming_key)
    except InvalidSignatureError:
        return False
    return policy.allows(raw)
