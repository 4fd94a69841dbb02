"""Stored-file catalog."""
