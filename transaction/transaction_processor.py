import logging
from typing import Dict, List, Sequence

from supabase import Client

from common.errors import Result, StoreError
from common.store import TRANSACTIONS
from .email_parser import TransactionCandidate

logger = logging.getLogger(__name__)


class TransactionProcessor:
    """
    Persists extracted transactions into the ledger

    Writes are upserts keyed on `reference`, so ingesting the same message
    again overwrites the existing row instead of adding a second one.
    """

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def build_rows(self, candidates: Sequence[TransactionCandidate], user_id: str) -> List[Dict]:
        """
        Convert candidates to rows, collapsing repeated references (last wins)

        Postgres rejects a single upsert statement that touches the same
        conflict key twice.
        """
        rows = {}
        for candidate in candidates:
            rows[candidate.reference] = candidate.to_row(user_id)
        return list(rows.values())

    def upsert_all(self, candidates: Sequence[TransactionCandidate], user_id: str) -> Result[int]:
        """
        Upsert every candidate for a user and return how many rows were written
        """
        rows = self.build_rows(candidates, user_id)
        if not rows:
            return Result.success(0)

        try:
            self.supabase.table(TRANSACTIONS).upsert(rows, on_conflict="reference").execute()
            logger.info(f"✅ Upserted {len(rows)} transactions for {user_id}")
            return Result.success(len(rows))
        except Exception as e:
            logger.warning(f"⚠️ Batch upsert failed, retrying row by row: {e}")

        return self._upsert_each(rows, user_id)

    def _upsert_each(self, rows: List[Dict], user_id: str) -> Result[int]:
        saved = 0
        failures = []

        for row in rows:
            try:
                self.supabase.table(TRANSACTIONS).upsert(row, on_conflict="reference").execute()
                saved += 1
            except Exception as e:
                logger.error(f"❌ Error saving transaction {row['reference']}: {e}")
                failures.append(row["reference"])

        if saved == 0:
            return Result.failure(StoreError(
                f"Failed to save {len(failures)} transactions",
                context={"references": failures},
            ))

        if failures:
            logger.warning(f"⚠️ Saved {saved}/{len(rows)} transactions for {user_id}; failed: {failures}")
        return Result.success(saved)
