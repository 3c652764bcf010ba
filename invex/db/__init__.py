from invex.db.connection import Database, get_base
from invex.db.models import Invoice, InvoiceLineItem, RunLease

__all__ = ['Database', 'get_base', 'Invoice', 'InvoiceLineItem', 'RunLease']
