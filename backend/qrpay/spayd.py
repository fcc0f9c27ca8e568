"""
SPAYD (Short Payment Descriptor) - Czech QR payment strings

Format: SPD*1.0*ACC:<IBAN>[+<BIC>]*AM:<amount>*CC:<currency>*MSG:...*X-VS:...*

Values are upper-cased with diacritics removed so the QR code fits the
alphanumeric mode; '*' is the field delimiter and is percent-encoded.
"""

import unicodedata
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from config import get_settings

SPAYD_HEADER = "SPD*1.0"

MESSAGE_MAX_LENGTH = 60
RECIPIENT_NAME_MAX_LENGTH = 35
SYMBOL_MAX_LENGTH = 10

DEFAULT_PAYMENT_MESSAGE = "CLENSKY PRISPEVEK"


@dataclass
class PaymentParams:
    """Parameters of a single SPAYD payment string"""
    iban: str
    bic: str = ""
    amount: Union[Decimal, float] = 0
    currency: str = "CZK"
    variable_symbol: str = ""
    specific_symbol: str = ""
    constant_symbol: str = ""
    message: str = ""
    recipient_name: str = ""
    due_date: str = ""  # YYYYMMDD


def remove_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def sanitize_message(value: str, max_length: int) -> str:
    value = remove_diacritics(value.upper())
    value = value.replace("*", "%2A")
    return value[:max_length]


def sanitize_symbol(value: str, max_length: int = SYMBOL_MAX_LENGTH) -> str:
    """Keep digits only, truncated to max_length."""
    return "".join(c for c in value if c.isascii() and c.isdigit())[:max_length]


def generate_spayd(params: PaymentParams) -> str:
    """
    Build the SPAYD string for a payment.

    Example:
        SPD*1.0*ACC:CZ6508000000192000145399+GIBACZPX*AM:450.00*CC:CZK*MSG:CLENSKY PRISPEVEK*X-VS:1234567890*
    """
    account = params.iban
    if params.bic:
        account += "+" + params.bic

    parts = [SPAYD_HEADER, "ACC:" + account]

    if params.amount and params.amount > 0:
        parts.append(f"AM:{params.amount:.2f}")

    parts.append("CC:" + (params.currency or "CZK"))

    if params.due_date:
        parts.append("DT:" + params.due_date)
    if params.message:
        parts.append("MSG:" + sanitize_message(params.message, MESSAGE_MAX_LENGTH))
    if params.recipient_name:
        parts.append("RN:" + sanitize_message(params.recipient_name, RECIPIENT_NAME_MAX_LENGTH))

    if params.variable_symbol:
        parts.append("X-VS:" + sanitize_symbol(params.variable_symbol))
    if params.specific_symbol:
        parts.append("X-SS:" + sanitize_symbol(params.specific_symbol))
    if params.constant_symbol:
        parts.append("X-KS:" + sanitize_symbol(params.constant_symbol))

    return "*".join(parts) + "*"


def parse_spayd(spayd: str) -> PaymentParams:
    """
    Parse a SPAYD string back into its parameters.

    Raises:
        ValueError: If the header is missing
    """
    if not spayd.startswith(SPAYD_HEADER + "*"):
        raise ValueError("Invalid SPAYD header")

    params = PaymentParams(iban="")
    content = spayd[len(SPAYD_HEADER) + 1:].rstrip("*")

    for part in content.split("*"):
        key, sep, value = part.partition(":")
        if not sep:
            continue
        decoded = value.replace("%2A", "*")

        if key == "ACC":
            params.iban, _, params.bic = value.partition("+")
        elif key == "AM":
            params.amount = Decimal(decoded)
        elif key == "CC":
            params.currency = decoded
        elif key == "DT":
            params.due_date = decoded
        elif key == "MSG":
            params.message = decoded
        elif key == "RN":
            params.recipient_name = decoded
        elif key == "X-VS":
            params.variable_symbol = decoded
        elif key == "X-SS":
            params.specific_symbol = decoded
        elif key == "X-KS":
            params.constant_symbol = decoded

    return params


class PaymentQRService:
    """SPAYD strings for payments to the organization's account."""

    def __init__(self, iban: Optional[str] = None, bic: Optional[str] = None):
        settings = get_settings()
        self.iban = iban if iban is not None else settings.BANK_IBAN
        self.bic = bic if bic is not None else settings.BANK_BIC

    def is_configured(self) -> bool:
        return bool(self.iban)

    def payment_descriptor(
        self,
        amount: Union[Decimal, float],
        variable_symbol: str,
        message: str = DEFAULT_PAYMENT_MESSAGE,
    ) -> Optional[str]:
        """SPAYD string for the payment, or None when no account is configured."""
        if not self.is_configured():
            return None
        return generate_spayd(PaymentParams(
            iban=self.iban,
            bic=self.bic,
            amount=amount,
            variable_symbol=variable_symbol,
            message=message,
        ))
