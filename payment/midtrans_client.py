import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import requests

from common.config import Config
from common.errors import ProviderError, Result

logger = logging.getLogger(__name__)

SANDBOX_SNAP_URL = "https://app.sandbox.midtrans.com/snap/v1/transactions"
PRODUCTION_SNAP_URL = "https://app.midtrans.com/snap/v1/transactions"


@dataclass
class SnapTransaction:
    token: Optional[str]
    redirect_url: str


class MidtransSnapClient:
    """Creates Snap checkouts and authenticates Midtrans notifications"""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.server_key = config.midtrans_server_key
        self.snap_url = PRODUCTION_SNAP_URL if config.midtrans_is_production else SANDBOX_SNAP_URL
        self.base_url = config.app_base_url
        self.timeout = config.timeout
        self.session = session or requests.Session()

    def create_transaction(
        self,
        order_id: str,
        gross_amount: int,
        buyer_email: str,
        line_items: List[Dict],
    ) -> Result[SnapTransaction]:
        """
        Create a Snap transaction and return its redirect URL
        """
        body = {
            "transaction_details": {
                "order_id": order_id,
                "gross_amount": gross_amount,
            },
            "customer_details": {
                "email": buyer_email,
            },
            "item_details": line_items,
            "callbacks": {
                "finish": f"{self.base_url}/subscription/success",
                "error": f"{self.base_url}/subscription/failed",
                "cancel": f"{self.base_url}/subscription/failed",
            },
        }

        try:
            response = self.session.post(
                self.snap_url,
                json=body,
                auth=(self.server_key, ""),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.Timeout:
            return Result.failure(ProviderError("Payment gateway timed out"))
        except requests.RequestException as e:
            return Result.failure(ProviderError(f"Payment gateway unreachable: {e}"))

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if not response.ok:
            reasons = payload.get("error_messages") or [f"HTTP {response.status_code}"]
            logger.error(f"❌ Midtrans rejected order {order_id}: {reasons}")
            return Result.failure(ProviderError(
                f"Payment gateway rejected the transaction: {'; '.join(map(str, reasons))}",
                context={"order_id": order_id},
            ))

        redirect_url = payload.get("redirect_url")
        if not redirect_url:
            return Result.failure(ProviderError(
                "Payment gateway returned no redirect URL", context={"order_id": order_id}
            ))

        return Result.success(SnapTransaction(token=payload.get("token"), redirect_url=redirect_url))

    def signature_for(self, order_id: str, status_code: str, gross_amount: str) -> str:
        raw = f"{order_id}{status_code}{gross_amount}{self.server_key}"
        return hashlib.sha512(raw.encode("utf-8")).hexdigest()

    def verify_signature(self, payload: Dict) -> bool:
        """
        Check a notification's signature_key

        Without a configured server key there is nothing to verify against,
        so every payload is accepted (local development).
        """
        if not self.server_key:
            return True

        signature = payload.get("signature_key")
        if not signature:
            return False

        expected = self.signature_for(
            str(payload.get("order_id", "")),
            str(payload.get("status_code", "")),
            str(payload.get("gross_amount", "")),
        )
        return hmac.compare_digest(expected, str(signature))
