"""
Core module - Configuration, logging, errors and the vault facade.

Submodules are imported explicitly; this package does not re-export them
so that low-level modules can import each other without cycles.
"""
