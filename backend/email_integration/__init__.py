"""
Email Integration Module

Member notifications sent through Resend:
- welcome (membership accepted)
- negative_balance
- debt_warning (balance below two monthly fees)
- membership_suspended
"""

from .email_client import EmailClient, EmailResult, EmailMessage, EmailStatus
from .email_sender import EmailSender, EmailTemplate

__all__ = [
    'EmailClient',
    'EmailResult',
    'EmailMessage',
    'EmailStatus',
    'EmailSender',
    'EmailTemplate',
]
