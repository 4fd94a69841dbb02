"""
ScanVault Authentication Module
===============================

Provides:
- Argon2id password hashing (argon2_auth)
- Account records and signup (accounts)
- Brute-force and administrator lock state machine (lock_state)
- Signed bearer tokens with version-based invalidation (tokens)
- Administrator actions (admin)

Submodules are imported directly; this package re-exports nothing so
the catalog and administration layers can depend on accounts without
import cycles.
"""
