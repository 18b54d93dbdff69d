from .pending_reconciliation import PendingOrderReconciliationWorker

__all__ = ["PendingOrderReconciliationWorker"]
