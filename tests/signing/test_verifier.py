"""Tests for Ed25519 verification and ownership."""

from __future__ import annotations

import base64
from datetime import UTC, datetime

import pytest

from appregistry.config import SignatureConfig
from appregistry.contracts.entity import parse_entity
from appregistry.errors import InvalidSignatureError
from appregistry.signing.verifier import (
    Open,
    RestrictedTo,
    b64url_encode,
    decode_private_key,
    decode_public_key,
    decode_signature,
    generate_keypair,
    is_allowed_owner,
    ownership_policy_for,
    sign_document,
    verify_document,
    verify_entity,
)
from tests.fixtures.documents import make_bundle, make_manifest

STRICT = SignatureConfig(allow_unsigned_manifests=False, allow_unsigned_bundles=False)


@pytest.fixture()
def keypair() -> tuple[bytes, bytes]:
    return generate_keypair()


def _flip_bit(text: str, index: int) -> str:
    raw = bytearray(decode_signature(text))
    raw[index // 8] ^= 1 << (index % 8)
    return b64url_encode(bytes(raw))


class TestSignVerify:
    """Round trips and tamper detection."""

    def test_signed_manifest_verifies(self, keypair: tuple[bytes, bytes]) -> None:
        sk, pk = keypair
        signed = sign_document(make_manifest(), sk)
        entity = parse_entity(signed)
        verify_entity(entity, STRICT)
        assert decode_public_key(entity.pubkey or "") == pk

    def test_signed_bundle_verifies(self, keypair: tuple[bytes, bytes]) -> None:
        sk, _ = keypair
        verify_entity(parse_entity(sign_document(make_bundle(), sk)), STRICT)

    def test_signed_at_format(self, keypair: tuple[bytes, bytes]) -> None:
        sk, _ = keypair
        when = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
        signed = sign_document(make_manifest(), sk, signed_at=when)
        assert signed["signature"]["signed_at"] == "2026-01-02T03:04:05Z"

    @pytest.mark.parametrize("bit", [0, 7, 100, 511])
    def test_flipped_signature_bit_fails(self, keypair: tuple[bytes, bytes], bit: int) -> None:
        sk, _ = keypair
        signed = sign_document(make_manifest(), sk)
        signed["signature"]["sig"] = _flip_bit(signed["signature"]["sig"], bit)
        with pytest.raises(InvalidSignatureError, match="does not match"):
            verify_entity(parse_entity(signed), STRICT)

    def test_tampered_payload_fails(self, keypair: tuple[bytes, bytes]) -> None:
        sk, _ = keypair
        signed = sign_document(make_manifest(), sk)
        signed["name"] = "Changed"
        with pytest.raises(InvalidSignatureError):
            verify_entity(parse_entity(signed), STRICT)

    def test_transport_field_does_not_break_signature(self, keypair: tuple[bytes, bytes]) -> None:
        sk, _ = keypair
        signed = sign_document(make_manifest(), sk)
        signed["_received_via"] = "cli"
        verify_entity(parse_entity(signed), STRICT)

    def test_wrong_key_fails(self, keypair: tuple[bytes, bytes]) -> None:
        sk, _ = keypair
        _, other_pk = generate_keypair()
        signed = sign_document(make_manifest(), sk)
        signed["signature"]["pubkey"] = b64url_encode(other_pk)
        with pytest.raises(InvalidSignatureError):
            verify_entity(parse_entity(signed), STRICT)

    def test_unsupported_algorithm(self, keypair: tuple[bytes, bytes]) -> None:
        sk, _ = keypair
        signed = sign_document(make_manifest(), sk)
        signed["signature"]["alg"] = "secp256k1"
        with pytest.raises(InvalidSignatureError, match="unsupported signature algorithm"):
            verify_entity(parse_entity(signed), STRICT)

    def test_algorithm_case_insensitive(self, keypair: tuple[bytes, bytes]) -> None:
        sk, _ = keypair
        signed = sign_document(make_manifest(), sk)
        signed["signature"]["alg"] = "Ed25519"
        verify_entity(parse_entity(signed), STRICT)

    def test_verify_document_detached(self, keypair: tuple[bytes, bytes]) -> None:
        sk, _ = keypair
        signed = sign_document(make_manifest(), sk)
        verify_document(make_manifest(), signed["signature"]["pubkey"], signed["signature"]["sig"])


class TestUnsignedPolicy:
    """Unsigned documents follow configuration."""

    def test_unsigned_allowed_by_default(self) -> None:
        verify_entity(parse_entity(make_manifest()), SignatureConfig())
        verify_entity(parse_entity(make_bundle()), SignatureConfig())

    def test_unsigned_manifest_rejected(self) -> None:
        with pytest.raises(InvalidSignatureError, match="unsigned manifests"):
            verify_entity(parse_entity(make_manifest()), STRICT)

    def test_unsigned_bundle_rejected_independently(self) -> None:
        config = SignatureConfig(allow_unsigned_manifests=True, allow_unsigned_bundles=False)
        verify_entity(parse_entity(make_manifest()), config)
        with pytest.raises(InvalidSignatureError, match="unsigned bundles"):
            verify_entity(parse_entity(make_bundle()), config)


class TestKeyDecoding:
    """Accepted key and signature encodings."""

    def test_padded_and_unpadded_equal(self) -> None:
        raw = bytes(range(32))
        padded = base64.urlsafe_b64encode(raw).decode()
        assert padded.endswith("=")
        assert decode_public_key(padded) == decode_public_key(padded.rstrip("=")) == raw

    def test_prefixes_stripped(self) -> None:
        raw = bytes(range(32))
        text = b64url_encode(raw)
        assert decode_public_key(f"ed25519:{text}") == raw
        assert decode_public_key(f"base64:{text}") == raw

    def test_standard_base64_accepted(self) -> None:
        raw = bytes([0xFB] * 32)
        assert decode_public_key(base64.b64encode(raw).decode()) == raw

    def test_wrong_length(self) -> None:
        with pytest.raises(InvalidSignatureError, match="32 bytes"):
            decode_public_key(b64url_encode(b"short"))
        with pytest.raises(InvalidSignatureError, match="64 bytes"):
            decode_signature(b64url_encode(bytes(32)))

    def test_garbage(self) -> None:
        with pytest.raises(InvalidSignatureError, match="not valid base64"):
            decode_public_key("!!not base64!!")

    def test_private_key(self) -> None:
        sk, _ = generate_keypair()
        assert decode_private_key(b64url_encode(sk)) == sk


class TestOwnership:
    """Ownership policy derivation."""

    def test_unsigned_without_owners_is_open(self) -> None:
        existing = parse_entity(make_manifest())
        assert isinstance(ownership_policy_for(existing), Open)
        assert is_allowed_owner(existing, None)

    def test_signing_key_restricts(self, keypair: tuple[bytes, bytes]) -> None:
        sk, pk = keypair
        existing = parse_entity(sign_document(make_manifest(), sk))
        policy = ownership_policy_for(existing)
        assert isinstance(policy, RestrictedTo)
        assert policy.keys == frozenset({pk})
        assert is_allowed_owner(existing, b64url_encode(pk))
        assert not is_allowed_owner(existing, None)
        assert not is_allowed_owner(existing, b64url_encode(generate_keypair()[1]))

    def test_owners_take_precedence(self, keypair: tuple[bytes, bytes]) -> None:
        sk, signer = keypair
        _, owner = generate_keypair()
        existing = parse_entity(sign_document(make_bundle(owners=[b64url_encode(owner)]), sk))
        assert is_allowed_owner(existing, b64url_encode(owner))
        assert not is_allowed_owner(existing, b64url_encode(signer))

    def test_encoding_variants_equivalent(self) -> None:
        _, owner = generate_keypair()
        padded = base64.urlsafe_b64encode(owner).decode()
        existing = parse_entity(make_bundle(owners=[f"ed25519:{padded}"]))
        assert is_allowed_owner(existing, b64url_encode(owner))
        assert is_allowed_owner(existing, base64.b64encode(owner).decode())

    def test_undecodable_incoming_key(self) -> None:
        _, owner = generate_keypair()
        existing = parse_entity(make_bundle(owners=[b64url_encode(owner)]))
        assert not is_allowed_owner(existing, "???")
