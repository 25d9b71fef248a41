"""
Transaction ingestion module for Ruddy Wallet
Extracts transactions from mailbox messages and upserts them into the ledger
"""

from .email_parser import EmailParser, TransactionCandidate
from .sync_log import SyncLog
from .sync_orchestrator import SyncOrchestrator, SyncOutcome, SyncState
from .transaction_processor import TransactionProcessor

__all__ = [
    'EmailParser',
    'TransactionCandidate',
    'SyncLog',
    'SyncOrchestrator',
    'SyncOutcome',
    'SyncState',
    'TransactionProcessor',
]
