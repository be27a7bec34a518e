"""Personal cloud storage backend: per-user files, quotas and reconciliation."""
__version__ = "1.0.0"
