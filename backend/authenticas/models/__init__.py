from .parties import Retailer, Company, CompanyRetailerLink
from .auth import User, SessionToken
from .ledger import Transaction, ImmutableRecordError
from .disconnects import DisconnectRequest
from .audit import AuditEntry

__all__ = [
    'Retailer', 'Company', 'CompanyRetailerLink',
    'User', 'SessionToken',
    'Transaction', 'ImmutableRecordError',
    'DisconnectRequest',
    'AuditEntry',
]
