#!/usr/bin/env python3
"""
Sign a manifest or bundle with an Ed25519 key, or generate a key.

Usage:
    # New keypair; private key written to a file, public key printed
    python scripts/sign_document.py keygen --out publisher.key

    # Sign a document (writes a copy with a "signature" block)
    python scripts/sign_document.py sign manifest.json --key publisher.key -o signed.json

    # Check a signed document
    python scripts/sign_document.py verify signed.json
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

import orjson

from appregistry.config import SignatureConfig
from appregistry.contracts.entity import parse_entity
from appregistry.errors import RegistryError
from appregistry.logging_config import setup_logging
from appregistry.signing.verifier import (
    b64url_encode,
    decode_private_key,
    generate_keypair,
    sign_document,
    verify_entity,
)

logger = logging.getLogger(__name__)


def _read_private_key(path: Path) -> bytes:
    return decode_private_key(path.read_text(encoding="utf-8").strip())


def cmd_keygen(args: argparse.Namespace) -> int:
    private_raw, public_raw = generate_keypair()
    # Owner-only from creation; never overwrite an existing key
    try:
        fd = os.open(args.out, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    except FileExistsError:
        logger.error("Refusing to overwrite existing key file %s", args.out)
        return 1
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(b64url_encode(private_raw) + "\n")
    print(b64url_encode(public_raw))
    logger.info("Private key written to %s", args.out)
    return 0


def cmd_sign(args: argparse.Namespace) -> int:
    doc = orjson.loads(args.document.read_bytes())
    signed = sign_document(doc, _read_private_key(args.key))
    # Validate what we are about to hand out
    verify_entity(parse_entity(signed), SignatureConfig())
    output = orjson.dumps(signed, option=orjson.OPT_INDENT_2)
    if args.output is None:
        sys.stdout.write(output.decode() + "\n")
    else:
        args.output.write_bytes(output + b"\n")
        logger.info("Signed document written to %s", args.output)
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    doc = orjson.loads(args.document.read_bytes())
    entity = parse_entity(doc)
    strict = SignatureConfig(allow_unsigned_manifests=False, allow_unsigned_bundles=False)
    verify_entity(entity, strict)
    print(f"OK {entity.id}@{entity.version}")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Sign registry documents with Ed25519.")
    sub = parser.add_subparsers(dest="command", required=True)

    keygen = sub.add_parser("keygen", help="Generate a keypair")
    keygen.add_argument("--out", type=Path, required=True, help="Private key output path")
    keygen.set_defaults(func=cmd_keygen)

    sign = sub.add_parser("sign", help="Sign a document")
    sign.add_argument("document", type=Path, help="Manifest or bundle JSON")
    sign.add_argument("--key", type=Path, required=True, help="Private key file")
    sign.add_argument("--output", "-o", type=Path, default=None, help="Output path (default: stdout)")
    sign.set_defaults(func=cmd_sign)

    verify = sub.add_parser("verify", help="Verify a signed document")
    verify.add_argument("document", type=Path, help="Signed manifest or bundle JSON")
    verify.set_defaults(func=cmd_verify)

    args = parser.parse_args()
    setup_logging(level="INFO")

    try:
        return int(args.func(args))
    except RegistryError as e:
        logger.error("%s: %s", e.code, e.message)
        for detail in e.details:
            logger.error("  %s", detail)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
