"""
QR Payment Module

Czech QR payment (SPAYD) strings for membership fee payments.
"""

from .spayd import (
    PaymentParams,
    PaymentQRService,
    generate_spayd,
    parse_spayd,
    remove_diacritics,
    sanitize_symbol,
)

__all__ = [
    'PaymentParams',
    'PaymentQRService',
    'generate_spayd',
    'parse_spayd',
    'remove_diacritics',
    'sanitize_symbol',
]
