"""
Fio Bank API Client

Read-only client for the Fio banka REST API:
- GET /periods/{token}/{from}/{to}/transactions.json   (date range)
- GET /last/{token}/transactions.json                  (since last download)
- GET /by-id/{token}/{year}/{id}/transactions.json     (from a statement id)
- GET /set-last-date/{token}/{date}/                   (move the download checkpoint)

Statement JSON nests transactions under
accountStatement.transactionList.transaction[], each transaction being a map
of "columnN" -> {"value": ...}. Missing columns come through as null.

No retries: the API rate-limits repeated requests for the same token, the
daily job simply runs again the next day.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List

import httpx

from config import get_settings
from reconciliation.errors import UpstreamUnavailable, MalformedTransactionDate

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0  # seconds

# Column ids of the Fio statement format
COLUMN_ID = "column22"
COLUMN_DATE = "column0"
COLUMN_AMOUNT = "column1"
COLUMN_COUNTERPARTY_ACCOUNT = "column2"
COLUMN_BANK_CODE = "column3"
COLUMN_VARIABLE_SYMBOL = "column5"
COLUMN_SPECIFIC_SYMBOL = "column6"
COLUMN_IDENTIFICATION = "column7"
COLUMN_TYPE = "column8"
COLUMN_COUNTERPARTY_NAME = "column10"
COLUMN_BANK_NAME = "column12"
COLUMN_CURRENCY = "column14"
COLUMN_MESSAGE = "column16"
COLUMN_COMMENT = "column25"


# ==================== DATA CLASSES ====================

@dataclass
class BankTransaction:
    """One normalized bank statement line."""
    external_id: str
    date: str
    amount: Decimal
    currency: str = ""
    counterparty_account: str = ""
    counterparty_name: str = ""
    bank_code: str = ""
    bank_name: str = ""
    identifier: str = ""  # variable symbol
    specific_symbol: str = ""
    message: str = ""
    comment: str = ""
    transaction_type: str = ""
    identification: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def remote_account(self) -> str:
        """Counterparty account in "number/bankcode" form."""
        if self.bank_code:
            return f"{self.counterparty_account}/{self.bank_code}"
        return self.counterparty_account

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.external_id,
            "date": self.date,
            "amount": str(self.amount),
            "currency": self.currency,
            "account_number": self.counterparty_account,
            "account_name": self.counterparty_name,
            "bank_code": self.bank_code,
            "bank_name": self.bank_name,
            "variable_symbol": self.identifier,
            "specific_symbol": self.specific_symbol,
            "message": self.message,
            "comment": self.comment,
            "transaction_type": self.transaction_type,
            "identification": self.identification,
        }


# ==================== PARSING ====================

def format_fio_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def parse_fio_date(value: str) -> date:
    """
    Parse a statement date.

    Accepts "YYYY-MM-DD+ZZZZ" (the API's usual form) and plain "YYYY-MM-DD".

    Raises:
        MalformedTransactionDate: Neither form matches
    """
    for fmt in ("%Y-%m-%d%z", "%Y-%m-%d"):
        try:
            return datetime.strptime(value or "", fmt).date()
        except ValueError:
            continue
    raise MalformedTransactionDate(value)


def _column_value(raw: Dict[str, Any], column: str) -> Any:
    cell = raw.get(column)
    if isinstance(cell, dict):
        return cell.get("value")
    return None


def _column_str(raw: Dict[str, Any], column: str) -> str:
    value = _column_value(raw, column)
    return value if isinstance(value, str) else ""


def _variable_symbol(raw: Dict[str, Any]) -> str:
    value = _column_value(raw, COLUMN_VARIABLE_SYMBOL)
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return f"{value:.0f}"
    return ""


def parse_transaction(raw: Dict[str, Any]) -> BankTransaction:
    """Normalize one raw statement transaction."""
    raw_id = _column_value(raw, COLUMN_ID)
    if isinstance(raw_id, float):
        raw_id = int(raw_id)
    external_id = str(raw_id) if raw_id is not None else ""

    raw_amount = _column_value(raw, COLUMN_AMOUNT)
    try:
        amount = Decimal(str(raw_amount)) if raw_amount is not None else Decimal("0")
    except InvalidOperation:
        amount = Decimal("0")

    return BankTransaction(
        external_id=external_id,
        date=_column_str(raw, COLUMN_DATE),
        amount=amount,
        currency=_column_str(raw, COLUMN_CURRENCY),
        counterparty_account=_column_str(raw, COLUMN_COUNTERPARTY_ACCOUNT),
        counterparty_name=_column_str(raw, COLUMN_COUNTERPARTY_NAME),
        bank_code=_column_str(raw, COLUMN_BANK_CODE),
        bank_name=_column_str(raw, COLUMN_BANK_NAME),
        identifier=_variable_symbol(raw),
        specific_symbol=_column_str(raw, COLUMN_SPECIFIC_SYMBOL),
        message=_column_str(raw, COLUMN_MESSAGE),
        comment=_column_str(raw, COLUMN_COMMENT),
        transaction_type=_column_str(raw, COLUMN_TYPE),
        identification=_column_str(raw, COLUMN_IDENTIFICATION),
        raw=raw,
    )


def parse_statement(payload: Dict[str, Any]) -> List[BankTransaction]:
    statement = payload.get("accountStatement") or {}
    transaction_list = statement.get("transactionList") or {}
    raw_transactions = transaction_list.get("transaction") or []
    return [parse_transaction(raw) for raw in raw_transactions if isinstance(raw, dict)]


# ==================== CLIENT ====================

class FioClient:
    """
    Async Fio bank API client.

    Usage:
        client = FioClient()
        transactions = await client.fetch_transactions_by_period(date(2024, 1, 1), date(2024, 3, 31))
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.token = token if token is not None else settings.BANK_FIO_TOKEN
        self.base_url = (base_url or settings.BANK_FIO_BASE_URL).rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.token)

    async def fetch_transactions_by_period(self, date_from: date, date_to: date) -> List[BankTransaction]:
        """Transactions booked between date_from and date_to (inclusive)."""
        path = f"/periods/{self.token}/{format_fio_date(date_from)}/{format_fio_date(date_to)}/transactions.json"
        return await self._fetch_transactions(path)

    async def fetch_since_last_download(self) -> List[BankTransaction]:
        """Transactions added since the last download checkpoint."""
        return await self._fetch_transactions(f"/last/{self.token}/transactions.json")

    async def fetch_transactions_by_id(self, year: int, id_from: int) -> List[BankTransaction]:
        return await self._fetch_transactions(f"/by-id/{self.token}/{year}/{id_from}/transactions.json")

    async def set_last_download_date(self, value: date) -> None:
        """Move the "since last download" checkpoint to the given date."""
        await self._get(f"/set-last-date/{self.token}/{format_fio_date(value)}/")

    async def _fetch_transactions(self, path: str) -> List[BankTransaction]:
        response = await self._get(path)
        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"Failed to parse bank statement JSON: {e}") from e

        if not isinstance(payload, dict):
            raise UpstreamUnavailable("Unexpected bank statement format")

        transactions = parse_statement(payload)
        logger.info(f"Fetched {len(transactions)} transactions from Fio API")
        return transactions

    async def _get(self, path: str) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url)
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable("Connection to Fio API timed out") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Cannot connect to Fio API: {str(e)[:100]}") from e

        if response.status_code != 200:
            raise UpstreamUnavailable(
                f"Fio API error (status {response.status_code}): {response.text[:200]}"
            )

        return response
