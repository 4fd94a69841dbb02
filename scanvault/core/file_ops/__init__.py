"""
File operations - scanning, ingest, transient plaintext and deletion.

Submodules:
    scanner        Scanner protocol and timeout-bounded runner
    ingest         Upload pipeline (scan -> quarantine or seal -> record)
    secure_view    Purge-on-close plaintext buffer
    secure_delete  Removal of staged, vaulted and quarantined bytes
"""
