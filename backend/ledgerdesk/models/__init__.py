from .tenancy import Tenant, Seller
from .sales import Sale, Payment, PaymentConfirmation
from .transfers import IncomingTransfer
from .cash import CashPeriod, CashMovement, CashClosure

__all__ = [
    'Tenant', 'Seller',
    'Sale', 'Payment', 'PaymentConfirmation',
    'IncomingTransfer',
    'CashPeriod', 'CashMovement', 'CashClosure',
]
