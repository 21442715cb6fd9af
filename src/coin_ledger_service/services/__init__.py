"""Service layer components."""

from coin_ledger_service.services.authorization import AuthContext
from coin_ledger_service.services.escrow_ledger import EscrowLedger
from coin_ledger_service.services.ledger_store import LedgerStore
from coin_ledger_service.services.submission_workflow import SubmissionWorkflow
from coin_ledger_service.services.topup_service import TopUpService
from coin_ledger_service.services.withdrawal_service import WithdrawalService

__all__ = [
    "AuthContext",
    "EscrowLedger",
    "LedgerStore",
    "SubmissionWorkflow",
    "TopUpService",
    "WithdrawalService",
]
