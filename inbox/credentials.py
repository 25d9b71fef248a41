import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from supabase import Client

from common.errors import Result, StoreError
from common.store import MAILBOX_CREDENTIALS

logger = logging.getLogger(__name__)


@dataclass
class MailboxCredential:
    user_id: str
    mailbox_address: str
    refresh_token: str
    active: bool = True
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict) -> "MailboxCredential":
        return cls(
            id=row.get("id"),
            user_id=row["user_id"],
            mailbox_address=row.get("mailbox_address", ""),
            refresh_token=row.get("refresh_token", ""),
            active=bool(row.get("active", True)),
        )

    def __repr__(self) -> str:
        # Keep the secret out of logs and tracebacks
        return (
            f"MailboxCredential(id={self.id!r}, user_id={self.user_id!r}, "
            f"mailbox_address={self.mailbox_address!r}, active={self.active!r})"
        )


class CredentialStore:
    """Reads and writes mailbox credentials; one row per user"""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def get_active(self, user_id: str) -> Optional[MailboxCredential]:
        """
        Load the active credential for a user

        Store failures propagate as StoreError so the orchestrator can log
        them; a missing or disabled credential is simply None.
        """
        try:
            response = self.supabase.table(MAILBOX_CREDENTIALS).select("*").eq(
                "user_id", user_id
            ).eq(
                "active", True
            ).limit(1).execute()
        except Exception as e:
            raise StoreError(f"Failed to load mailbox credential: {e}") from e

        if not response.data:
            return None
        return MailboxCredential.from_row(response.data[0])

    def list_active(self) -> List[MailboxCredential]:
        try:
            response = self.supabase.table(MAILBOX_CREDENTIALS).select("*").eq(
                "active", True
            ).execute()
        except Exception as e:
            raise StoreError(f"Failed to list mailbox credentials: {e}") from e

        return [MailboxCredential.from_row(row) for row in response.data or []]

    def save(self, user_id: str, mailbox_address: str, refresh_token: str) -> Result[MailboxCredential]:
        """
        Create or overwrite the user's credential and mark it active

        Callers run the connectivity test first; this only persists.
        """
        row = {
            "user_id": user_id,
            "mailbox_address": mailbox_address,
            "refresh_token": refresh_token,
            "active": True,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }

        try:
            response = self.supabase.table(MAILBOX_CREDENTIALS).upsert(
                row, on_conflict="user_id"
            ).execute()
        except Exception as e:
            logger.error(f"❌ Error saving mailbox credential for {user_id}: {e}")
            return Result.failure(StoreError(f"Failed to save mailbox credential: {e}"))

        saved = response.data[0] if response.data else row
        logger.info(f"✅ Mailbox credential saved for {user_id} ({mailbox_address})")
        return Result.success(MailboxCredential.from_row(saved))

    def deactivate(self, user_id: str) -> Result[bool]:
        """Soft-disable; credentials are never physically deleted"""
        try:
            response = self.supabase.table(MAILBOX_CREDENTIALS).update({
                "active": False,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }).eq(
                "user_id", user_id
            ).execute()
        except Exception as e:
            logger.error(f"❌ Error disabling mailbox credential for {user_id}: {e}")
            return Result.failure(StoreError(f"Failed to disable mailbox credential: {e}"))

        return Result.success(bool(response.data))
