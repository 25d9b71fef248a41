import itertools
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from common.errors import (
    AuthError,
    NotConfigured,
    ProviderError,
    StoreError,
    WalletError,
)
from inbox import CredentialStore, GmailClient
from .email_parser import EmailParser
from .sync_log import SyncLog
from .transaction_processor import TransactionProcessor

logger = logging.getLogger(__name__)


class SyncState(Enum):
    IDLE = "idle"
    CREDENTIAL_LOADED = "credential_loaded"
    TOKEN_REFRESHED = "token_refreshed"
    MESSAGES_LISTED = "messages_listed"
    EXTRACTING = "extracting"
    PERSISTED = "persisted"
    LOGGED = "logged"
    ERRORED = "errored"


@dataclass
class SyncOutcome:
    user_id: str
    state: SyncState = SyncState.IDLE
    status: Optional[str] = None
    processed: int = 0
    skipped: int = 0
    message: str = ""
    error: Optional[WalletError] = None
    account_id: Optional[int] = None
    logged: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self):
        data = {
            "success": self.ok,
            "status": self.status,
            "processed": self.processed,
            "skipped": self.skipped,
            "message": self.message,
        }
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


class SyncOrchestrator:
    """
    Drives one ingestion pass per user

    credential -> access token -> message listing -> extraction -> upsert,
    finishing with exactly one sync log entry whatever happened.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        gmail: GmailClient,
        parser: EmailParser,
        processor: TransactionProcessor,
        sync_log: SyncLog,
        query: str,
        max_results: int = 50,
    ):
        self.credentials = credentials
        self.gmail = gmail
        self.parser = parser
        self.processor = processor
        self.sync_log = sync_log
        self.query = query
        self.max_results = max_results

    def run(self, user_id: str, cancel_event: Optional[threading.Event] = None) -> SyncOutcome:
        outcome = SyncOutcome(user_id=user_id)

        try:
            self._run_pass(outcome, cancel_event)
        except WalletError as e:
            self._fail(outcome, e)
        except Exception as e:
            logger.exception(f"❌ Unexpected error during sync for {user_id}")
            self._fail(outcome, WalletError(f"Unexpected sync failure: {e}"))
        finally:
            if outcome.status is None:
                # Interrupted from outside (e.g. worker shutdown)
                outcome.status = "warning"
                outcome.message = "Sync interrupted before completion"
            self._write_log(outcome)

        return outcome

    def run_all(self, cancel_event: Optional[threading.Event] = None) -> List[SyncOutcome]:
        """
        One independent pass per active credential
        """
        try:
            credentials = self.credentials.list_active()
        except StoreError as e:
            logger.error(f"❌ Could not list mailbox credentials: {e}")
            return []

        outcomes = []
        for credential in credentials:
            if cancel_event is not None and cancel_event.is_set():
                break
            outcomes.append(self.run(credential.user_id, cancel_event))
        return outcomes

    def _run_pass(self, outcome: SyncOutcome, cancel_event: Optional[threading.Event]):
        user_id = outcome.user_id

        credential = self.credentials.get_active(user_id)
        if credential is None:
            raise NotConfigured("Gmail not connected")
        outcome.account_id = credential.id
        outcome.state = SyncState.CREDENTIAL_LOADED

        token = self.gmail.refresh_access_token(credential).unwrap()
        outcome.state = SyncState.TOKEN_REFRESHED

        refs = self.gmail.list_messages(token, self.query, self.max_results)
        first = next(refs, None)
        outcome.state = SyncState.MESSAGES_LISTED
        logger.info(f"📬 Listing messages for {user_id} with query: {self.query}")

        candidates = []
        cancelled = False
        pending = itertools.chain([first], refs) if first is not None else iter(())

        for ref in pending:
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                break

            outcome.state = SyncState.EXTRACTING
            try:
                raw_message = self.gmail.fetch_message(token, ref)
            except AuthError:
                raise
            except ProviderError as e:
                outcome.skipped += 1
                logger.warning(f"⚠️ Skipping message {ref.id}: {e}")
                continue

            result = self.parser.try_extract(raw_message)
            if result.ok:
                candidates.append(result.value)
            else:
                outcome.skipped += 1
                logger.info(f"⏭️ Skipping message {ref.id}: {result.error}")

        outcome.processed = self.processor.upsert_all(candidates, user_id).unwrap()
        outcome.state = SyncState.PERSISTED

        if cancelled:
            outcome.status = "warning"
            outcome.message = (
                f"Sync cancelled - {outcome.processed} transactions processed "
                f"before cancellation"
            )
            logger.warning(f"⚠️ {outcome.message} for {user_id}")
            return

        outcome.status = "success"
        outcome.message = f"Sync completed - {outcome.processed} transactions processed"
        if outcome.skipped:
            outcome.message += f", {outcome.skipped} messages skipped"
        logger.info(f"✅ {outcome.message} for {user_id}")

    def _fail(self, outcome: SyncOutcome, error: WalletError):
        outcome.state = SyncState.ERRORED
        outcome.status = "error"
        outcome.error = error
        outcome.message = error.message or "Sync failed"
        logger.error(f"❌ Sync failed for {outcome.user_id} [{error.code}]: {outcome.message}")

    def _write_log(self, outcome: SyncOutcome):
        outcome.logged = self.sync_log.write(
            account_id=outcome.account_id,
            user_id=outcome.user_id,
            status=outcome.status,
            message=outcome.message,
        )
        if outcome.state != SyncState.ERRORED:
            outcome.state = SyncState.LOGGED
