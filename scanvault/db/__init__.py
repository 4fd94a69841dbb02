"""
Database module - the authoritative record store.

Security Considerations:
- Parameterized queries only
- One explicitly constructed store handle per process
- Sensitive file content never enters the database
"""

from scanvault.db.store import VaultStore, StoreIntegrityError

__all__ = ["VaultStore", "StoreIntegrityError"]
