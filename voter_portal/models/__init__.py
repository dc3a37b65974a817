# voter_portal/models/__init__.py
# Central import surface for SQLModel table registration.
# Keeping these imports ensures init_db() sees all models and creates tables.

from .voter import Voter
from .reference import Reference, ReferenceStatus, REFERENCE_STATUS_ORDER
from .audit_log import AuditAction, AuditLog

__all__ = [
    "Voter",
    "Reference",
    "ReferenceStatus",
    "REFERENCE_STATUS_ORDER",
    "AuditAction",
    "AuditLog",
]
