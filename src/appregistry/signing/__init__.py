"""Canonical serialization, Ed25519 signing and ownership checks."""
