import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from supabase import Client

from common.errors import StoreError
from common.store import SYNC_LOG

logger = logging.getLogger(__name__)

SYNC_STATUSES = ("success", "warning", "error")


class SyncLog:
    """Append-only feed of sync pass outcomes, read by the dashboard"""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def write(self, account_id: Optional[int], user_id: str, status: str, message: str) -> bool:
        """
        Append one entry; returns False instead of raising when the store fails

        A failed log write must not replace the outcome of the pass it
        describes, so the caller only gets a flag.
        """
        if status not in SYNC_STATUSES:
            raise ValueError(f"Unknown sync status: {status}")

        row = {
            "account_id": account_id,
            "user_id": user_id,
            "status": status,
            "message": message,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

        try:
            self.supabase.table(SYNC_LOG).insert(row).execute()
            return True
        except Exception as e:
            logger.error(f"❌ Error writing sync log for {user_id} ({status}: {message}): {e}")
            return False

    def recent(self, user_id: str, limit: int = 20) -> List[Dict]:
        try:
            response = self.supabase.table(SYNC_LOG).select("*").eq(
                "user_id", user_id
            ).order(
                "created_at", desc=True
            ).limit(limit).execute()
        except Exception as e:
            raise StoreError(f"Failed to read sync log: {e}") from e

        return response.data or []
