from .accounts import Account, LedgerEntry
from .parties import Customer, Supplier
from .inventory import Item, Warehouse, StockLevel, StockMovement
from .tax import TaxCode
from .invoices import Invoice, InvoiceLine, InvoiceLineTax
from .documents import DocumentSequence

__all__ = [
    'Account', 'LedgerEntry',
    'Customer', 'Supplier',
    'Item', 'Warehouse', 'StockLevel', 'StockMovement',
    'TaxCode',
    'Invoice', 'InvoiceLine', 'InvoiceLineTax',
    'DocumentSequence',
]
