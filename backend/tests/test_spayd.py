"""
Unit Tests for SPAYD Payment Strings

Run with: pytest tests/test_spayd.py -v
"""

from decimal import Decimal

import pytest

from qrpay import PaymentParams, PaymentQRService, generate_spayd, parse_spayd, remove_diacritics, sanitize_symbol


IBAN = "CZ6508000000192000145399"


class TestGenerateSpayd:
    """Test SPAYD string generation."""

    def test_full_descriptor(self):
        spayd = generate_spayd(PaymentParams(
            iban=IBAN,
            bic="GIBACZPX",
            amount=Decimal("450"),
            variable_symbol="1234567890",
            message="Členský příspěvek",
        ))

        assert spayd == (
            "SPD*1.0*ACC:CZ6508000000192000145399+GIBACZPX*AM:450.00*CC:CZK"
            "*MSG:CLENSKY PRISPEVEK*X-VS:1234567890*"
        )

    def test_zero_amount_is_omitted(self):
        spayd = generate_spayd(PaymentParams(iban=IBAN))

        assert spayd == f"SPD*1.0*ACC:{IBAN}*CC:CZK*"

    def test_asterisk_is_escaped(self):
        spayd = generate_spayd(PaymentParams(iban=IBAN, message="a*b"))

        assert "MSG:A%2AB*" in spayd

    def test_symbols_are_digits_only(self):
        assert sanitize_symbol("VS 12-34") == "1234"
        assert sanitize_symbol("123456789012") == "1234567890"

    def test_remove_diacritics(self):
        assert remove_diacritics("Příliš žluťoučký kůň") == "Prilis zlutoucky kun"


class TestParseSpayd:
    """Test parsing descriptors back."""

    def test_parse(self):
        params = parse_spayd(
            "SPD*1.0*ACC:CZ6508000000192000145399+GIBACZPX*AM:450.00*CC:CZK*MSG:A%2AB*X-VS:1001*X-SS:7*"
        )

        assert params.iban == IBAN
        assert params.bic == "GIBACZPX"
        assert params.amount == Decimal("450.00")
        assert params.message == "A*B"
        assert params.variable_symbol == "1001"
        assert params.specific_symbol == "7"

    def test_invalid_header(self):
        with pytest.raises(ValueError):
            parse_spayd("SPD*2.0*ACC:X*")


class TestPaymentQRService:
    def test_not_configured(self):
        assert PaymentQRService(iban="").payment_descriptor(Decimal("600"), "1001") is None

    def test_descriptor(self):
        spayd = PaymentQRService(iban=IBAN).payment_descriptor(Decimal("600"), "1001")

        params = parse_spayd(spayd)
        assert params.amount == Decimal("600.00")
        assert params.variable_symbol == "1001"
        assert params.message == "CLENSKY PRISPEVEK"
