from .inventory import StockItem, StockTransaction, LedgerImmutableError
from .documents import SalesDocument, SalesDocumentLine, DocumentSequence
from .contracts import RecurringContract, ServiceOccurrence

__all__ = [
    'StockItem', 'StockTransaction', 'LedgerImmutableError',
    'SalesDocument', 'SalesDocumentLine', 'DocumentSequence',
    'RecurringContract', 'ServiceOccurrence',
]
