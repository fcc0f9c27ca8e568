"""
Unit Tests for the Fio Bank Client

Tests:
- Statement parsing (column mapping, null columns, numeric symbols)
- Date formats
- HTTP and JSON failures surfacing as UpstreamUnavailable

Run with: pytest tests/test_fio_client.py -v
"""

import pytest
from datetime import date
from decimal import Decimal

import httpx

from bank_feed.fio_client import (
    FioClient,
    parse_fio_date,
    parse_statement,
    parse_transaction,
    format_fio_date,
)
from reconciliation.errors import MalformedTransactionDate, UpstreamUnavailable


def raw_transaction(**overrides):
    raw = {
        "column22": {"value": 26962199069, "name": "ID pohybu", "id": 22},
        "column0": {"value": "2024-03-15+0100", "name": "Datum", "id": 0},
        "column1": {"value": 600.0, "name": "Objem", "id": 1},
        "column14": {"value": "CZK", "name": "Měna", "id": 14},
        "column2": {"value": "2900123456", "name": "Protiúčet", "id": 2},
        "column10": {"value": "Novák, Jan", "name": "Název protiúčtu", "id": 10},
        "column3": {"value": "2010", "name": "Kód banky", "id": 3},
        "column12": {"value": "Fio banka, a.s.", "name": "Název banky", "id": 12},
        "column5": {"value": "1001", "name": "VS", "id": 5},
        "column16": {"value": "clensky prispevek", "name": "Zpráva pro příjemce", "id": 16},
        "column8": {"value": "Bezhotovostní příjem", "name": "Typ", "id": 8},
        "column25": None,
    }
    raw.update(overrides)
    return raw


def statement(*transactions):
    return {
        "accountStatement": {
            "info": {"accountId": "2400000000", "bankId": "2010", "currency": "CZK"},
            "transactionList": {"transaction": list(transactions)},
        }
    }


class TestParsing:
    """Test normalization of statement transactions."""

    def test_parse_transaction(self):
        tx = parse_transaction(raw_transaction())

        assert tx.external_id == "26962199069"
        assert tx.date == "2024-03-15+0100"
        assert tx.amount == Decimal("600.0")
        assert tx.identifier == "1001"
        assert tx.counterparty_name == "Novák, Jan"
        assert tx.remote_account == "2900123456/2010"
        assert tx.comment == ""

    def test_numeric_variable_symbol(self):
        tx = parse_transaction(raw_transaction(column5={"value": 1001.0}))

        assert tx.identifier == "1001"

    def test_missing_variable_symbol(self):
        tx = parse_transaction(raw_transaction(column5=None))

        assert tx.identifier == ""

    def test_float_transaction_id(self):
        tx = parse_transaction(raw_transaction(column22={"value": 123.0}))

        assert tx.external_id == "123"

    def test_account_without_bank_code(self):
        tx = parse_transaction(raw_transaction(column3=None))

        assert tx.remote_account == "2900123456"

    def test_parse_statement(self):
        transactions = parse_statement(statement(raw_transaction(), raw_transaction(column22={"value": 2})))

        assert [tx.external_id for tx in transactions] == ["26962199069", "2"]

    def test_parse_empty_statement(self):
        assert parse_statement({"accountStatement": {"transactionList": None}}) == []
        assert parse_statement({}) == []

    def test_to_dict_keeps_symbol(self):
        data = parse_transaction(raw_transaction()).to_dict()

        assert data["variable_symbol"] == "1001"
        assert data["amount"] == "600.0"


class TestDates:
    def test_date_with_offset(self):
        assert parse_fio_date("2024-03-15+0100") == date(2024, 3, 15)

    def test_plain_date(self):
        assert parse_fio_date("2024-03-15") == date(2024, 3, 15)

    def test_malformed_date(self):
        with pytest.raises(MalformedTransactionDate):
            parse_fio_date("15.03.2024")

    def test_format(self):
        assert format_fio_date(date(2024, 1, 5)) == "2024-01-05"


class TestFioClient:
    """Test HTTP behaviour against a mocked API."""

    @pytest.mark.asyncio
    async def test_fetch_by_period(self):
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.path)
            return httpx.Response(200, json=statement(raw_transaction()))

        client = FioClient(token="secret", base_url="https://fio.test/v1/rest",
                           transport=httpx.MockTransport(handler))

        transactions = await client.fetch_transactions_by_period(date(2024, 1, 1), date(2024, 3, 31))

        assert len(transactions) == 1
        assert requested == ["/v1/rest/periods/secret/2024-01-01/2024-03-31/transactions.json"]

    @pytest.mark.asyncio
    async def test_fetch_since_last_download(self):
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.path)
            return httpx.Response(200, json=statement())

        client = FioClient(token="secret", base_url="https://fio.test/v1/rest",
                           transport=httpx.MockTransport(handler))

        assert await client.fetch_since_last_download() == []
        assert requested == ["/v1/rest/last/secret/transactions.json"]

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        client = FioClient(
            token="secret",
            base_url="https://fio.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(409, text="Too many requests")),
        )

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await client.fetch_since_last_download()

        assert "409" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        client = FioClient(
            token="secret",
            base_url="https://fio.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>")),
        )

        with pytest.raises(UpstreamUnavailable):
            await client.fetch_since_last_download()

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = FioClient(token="secret", base_url="https://fio.test", transport=httpx.MockTransport(handler))

        with pytest.raises(UpstreamUnavailable):
            await client.fetch_since_last_download()

    def test_is_configured(self):
        assert FioClient(token="secret").is_configured()
        assert not FioClient(token="").is_configured()
