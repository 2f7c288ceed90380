from payment_hub.models.enums import LedgerOutcome, NormalizedStatus, Provider
from payment_hub.models.ledger import AuditLog, Base, PaymentRecord

__all__ = [
    "Base",
    "PaymentRecord",
    "AuditLog",
    "LedgerOutcome",
    "NormalizedStatus",
    "Provider",
]
