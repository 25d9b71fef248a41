import base64
import binascii
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import ftfy

from common.errors import ExtractionSkip, Result

# Currency marker, then either dot-grouped rupiah ("1.500.000" with an optional
# ",50" decimal part) or digits with optional "," grouping and up to two decimals
AMOUNT_PATTERN = re.compile(
    r"(?:Rp|IDR|USD|\$)\s*(?:(\d{1,3}(?:\.\d{3})+(?:,\d{1,2})?)|([\d,]+(?:\.\d{1,2})?))(?!\d)",
    re.IGNORECASE,
)

# Best-effort direction heuristic: any of these in the body means money went out.
# Misclassification is expected; the user corrects it in the dashboard.
EXPENSE_KEYWORDS = ("debit", "payment", "purchase")

REFERENCE_PREFIX = "EMAIL-"
DEFAULT_PROVIDER = "Email"
DEFAULT_DESCRIPTION = "Email transaction"
OWN_ACCOUNT = "Personal Account"
EXTERNAL_ACCOUNT = "External"
EXTRACTION_FEE = Decimal("0")

# Raw bodies kept in raw_payload are cut to this many characters
PAYLOAD_BODY_LIMIT = 500


@dataclass
class TransactionCandidate:
    reference: str
    date: str
    description: str
    amount: Decimal
    provider: str
    direction: str
    account_from: str
    account_to: str
    fee: Decimal = EXTRACTION_FEE
    total_amount: Optional[Decimal] = None
    source_payload: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.total_amount is None:
            self.total_amount = self.amount
        if self.direction == "expense" and self.amount > 0:
            raise ValueError("expense amounts must be negative")
        if self.direction == "income" and self.amount < 0:
            raise ValueError("income amounts must be positive")

    def to_row(self, user_id: str) -> Dict[str, Any]:
        """Row shape of the transactions table read by the dashboard"""
        return {
            "reference": self.reference,
            "user_id": user_id,
            "date": self.date,
            "description": self.description,
            "amount": _json_number(self.amount),
            "provider": self.provider,
            "transaction_type": self.direction,
            "account_from": self.account_from,
            "account_to": self.account_to,
            "fee": _json_number(self.fee),
            "total_amount": _json_number(self.total_amount),
            "raw_payload": self.source_payload,
        }


def _json_number(value: Decimal):
    return int(value) if value == value.to_integral_value() else float(value)


class EmailParser:
    """
    Turns a Gmail message (format=full) into a TransactionCandidate

    Pure and stateless: one bad message yields a skip for that message only.
    """

    def fix_mojibake(self, text: str) -> str:
        """
        Fix mojibake encoding issues using ftfy
        """
        if not text:
            return text
        return ftfy.fix_text(text)

    def extract(self, raw_message: Dict) -> Optional[TransactionCandidate]:
        return self.try_extract(raw_message).value

    def try_extract(self, raw_message: Dict) -> Result[TransactionCandidate]:
        """
        Extract a transaction, reporting why a message was skipped

        The skip reason travels as an ExtractionSkip so the orchestrator can
        log it; nothing here raises.
        """
        try:
            return Result.success(self._extract(raw_message))
        except ExtractionSkip as e:
            return Result.failure(e)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            return Result.failure(ExtractionSkip(f"Malformed message: {e}"))

    def _extract(self, raw_message: Dict) -> TransactionCandidate:
        message_id = raw_message.get("id")
        if not message_id:
            raise ExtractionSkip("Message has no id")

        payload = raw_message.get("payload") or {}
        headers = self._headers(payload)
        subject = headers.get("subject", "")
        sender = headers.get("from", "")

        body = self.fix_mojibake(self.get_plain_text(payload))
        if not body.strip():
            raise ExtractionSkip("No plain-text body", {"message_id": message_id})

        match = AMOUNT_PATTERN.search(body)
        if not match:
            raise ExtractionSkip("No currency amount found", {"message_id": message_id})

        dotted, plain = match.groups()
        literal = dotted.replace(".", "").replace(",", ".") if dotted else plain.replace(",", "")
        try:
            value = Decimal(literal)
        except InvalidOperation:
            raise ExtractionSkip(
                f"Malformed amount: {match.group(0)!r}", {"message_id": message_id}
            )

        direction = self.classify_direction(body)
        amount = -value if direction == "expense" else value

        transaction_date = self._message_date(raw_message, headers)
        if not transaction_date:
            raise ExtractionSkip("Message has no usable date", {"message_id": message_id})

        is_expense = direction == "expense"

        return TransactionCandidate(
            reference=f"{REFERENCE_PREFIX}{message_id}",
            date=transaction_date,
            description=subject or DEFAULT_DESCRIPTION,
            amount=amount,
            provider=self.provider_from_sender(sender),
            direction=direction,
            account_from=OWN_ACCOUNT if is_expense else EXTERNAL_ACCOUNT,
            account_to=EXTERNAL_ACCOUNT if is_expense else OWN_ACCOUNT,
            fee=EXTRACTION_FEE,
            total_amount=amount,
            source_payload={
                "email_id": message_id,
                "subject": subject,
                "from": sender,
                "body": body[:PAYLOAD_BODY_LIMIT],
            },
        )

    def classify_direction(self, body: str) -> str:
        lowered = body.lower()
        if any(keyword in lowered for keyword in EXPENSE_KEYWORDS):
            return "expense"
        return "income"

    def provider_from_sender(self, sender: str) -> str:
        """
        Domain part of the From header, e.g. "BCA <info@klikbca.com>" -> klikbca.com
        """
        if "@" not in sender:
            return DEFAULT_PROVIDER
        domain = sender.split("@", 1)[1].split(">", 1)[0].strip()
        return domain or DEFAULT_PROVIDER

    def get_plain_text(self, payload: Dict) -> str:
        """
        Collect every text/plain part, walking nested multipart containers

        A singular body counts when it is text/plain or carries no MIME type.
        HTML-only messages produce an empty string.
        """
        parts = payload.get("parts")
        if parts:
            return "".join(self.get_plain_text(part) for part in parts)

        if payload.get("filename"):
            return ""

        mime_type = (payload.get("mimeType") or "").lower()
        if mime_type and not mime_type.startswith("text/plain"):
            return ""

        data = (payload.get("body") or {}).get("data")
        if not data:
            return ""

        try:
            padded = data + "=" * (-len(data) % 4)
            return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError):
            raise ExtractionSkip("Body is not valid base64")

    def _headers(self, payload: Dict) -> Dict[str, str]:
        return {
            (header.get("name") or "").lower(): header.get("value") or ""
            for header in payload.get("headers") or []
        }

    def _message_date(self, raw_message: Dict, headers: Dict[str, str]) -> Optional[str]:
        internal_date = raw_message.get("internalDate")
        if internal_date:
            try:
                dt = datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
                return dt.date().isoformat()
            except (ValueError, OverflowError, OSError):
                pass

        date_header = headers.get("date")
        if date_header:
            try:
                return parsedate_to_datetime(date_header).date().isoformat()
            except (TypeError, ValueError):
                return None
        return None
