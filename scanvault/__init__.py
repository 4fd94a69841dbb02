"""
ScanVault - Malware-Gated Encrypted File Vault
==============================================

Accepts uploads, routes each one through a malware scanner, encrypts
clean files at rest, quarantines infected ones, and records every
security-relevant action in a tamper-evident audit log.

Security Notice:
- No secrets are logged
- Fail-closed design pattern: an unavailable scanner never means "safe"
- All paths are OS-aware
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
