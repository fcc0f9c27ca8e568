"""
Bank Feed Module

Fetches statement data from the Fio bank API and normalizes it.
"""

from bank_feed.fio_client import (
    FioClient,
    BankTransaction,
    parse_fio_date,
    parse_statement,
    format_fio_date,
)

__all__ = [
    'FioClient',
    'BankTransaction',
    'parse_fio_date',
    'parse_statement',
    'format_fio_date',
]
