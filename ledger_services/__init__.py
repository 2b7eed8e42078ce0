"""Interactive and reporting services over the card ledger."""

from ledger_services.bill_payment import BillPaymentService, PaymentResult, parse_confirmation
from ledger_services.reconciliation import AccountReconciliation, ReconciliationService
from ledger_services.reject_report import RejectReport, RejectReportService

__all__ = [
    "AccountReconciliation",
    "BillPaymentService",
    "PaymentResult",
    "ReconciliationService",
    "RejectReport",
    "RejectReportService",
    "parse_confirmation",
]
