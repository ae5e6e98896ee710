from .tenancy import Company, Branch
from .customers import Customer
from .inventory import Product
from .orders import Order, OrderLine, OrderHistory
from .invoices import Invoice, InvoicePayment, DocumentSequence
from .returns import Return, ReturnItem
from .ledger import CustomerLedgerEntry
from .accounting import AccountingEntry

__all__ = [
    'Company', 'Branch',
    'Customer',
    'Product',
    'Order', 'OrderLine', 'OrderHistory',
    'Invoice', 'InvoicePayment', 'DocumentSequence',
    'Return', 'ReturnItem',
    'CustomerLedgerEntry',
    'AccountingEntry',
]
