from .audit import AuditLog

__all__ = ["AuditLog"]
