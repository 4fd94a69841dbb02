"""
ScanVault Cryptographic Core
============================

Streaming AES-256-GCM envelope for files at rest.

Security Properties:
    - All encryption is authenticated (AEAD)
    - Key derived once from the operator secret, memory-only
    - Fresh random nonce per envelope

WARNING: This module handles sensitive cryptographic material.
"""

from scanvault.core.crypto.envelope import CryptoEnvelope, derive_key

__all__ = ["CryptoEnvelope", "derive_key"]
