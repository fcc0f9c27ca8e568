"""
Email Sender - Member Notifications

Business-level email service:
- Template registry with {variable} placeholders (str.format)
- Typed senders for welcome, negative balance, debt warning and suspension
- Every delivery attempt is recorded in system_logs (subsystem "email")

A failed send never raises: callers get an EmailResult and decide what to
do with it (the monthly fee job only counts it).
"""

import logging
from decimal import Decimal
from typing import Optional, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database.models import MemberDB, LogLevel
from qrpay import PaymentQRService
from services.audit import AuditLogger, AuditSubsystem

from .email_client import EmailClient, EmailResult, EmailMessage, EmailStatus

logger = logging.getLogger(__name__)


class EmailTemplate:
    WELCOME = "welcome"
    NEGATIVE_BALANCE = "negative_balance"
    DEBT_WARNING = "debt_warning"
    MEMBERSHIP_SUSPENDED = "membership_suspended"


PAYMENT_MESSAGE = "CLENSKY PRISPEVEK"


class EmailSender:
    """
    Email Sender - High-level service for member notifications.

    Usage:
        sender = EmailSender(db=db)
        await sender.send_debt_warning(member, balance=Decimal("-1300"), monthly_fee=Decimal("600"))
        await db.commit()
    """

    def __init__(
        self,
        client: Optional[EmailClient] = None,
        db: Optional[AsyncSession] = None,
        qr_service: Optional[PaymentQRService] = None,
    ):
        """
        Args:
            client: EmailClient instance (creates default if not provided)
            db: Database session for delivery logging (optional)
            qr_service: SPAYD generator for payment instructions
        """
        self.client = client or EmailClient()
        self.db = db
        self.qr_service = qr_service or PaymentQRService()
        self.portal_url = get_settings().BASE_URL
        self._templates: Dict[str, Dict[str, str]] = {}

        self._register_default_templates()

    def is_ready(self) -> bool:
        return self.client.is_configured()

    # ==================== TEMPLATES ====================

    def register_template(self, template_id: str, subject: str, body: str) -> None:
        """
        Register an email template.

        Args:
            template_id: Unique template identifier
            subject: Subject template with {variable} placeholders
            body: Body template with {variable} placeholders
        """
        self._templates[template_id] = {'subject': subject, 'body': body}
        logger.debug(f"Registered email template: {template_id}")

    def get_template(self, template_id: str) -> Optional[Dict[str, str]]:
        return self._templates.get(template_id)

    def list_templates(self) -> List[str]:
        return list(self._templates.keys())

    def render_template(self, template_id: str, variables: Dict[str, str]) -> Optional[Dict[str, str]]:
        """
        Render a template with variables.

        Returns:
            Dict with rendered 'subject' and 'body' or None if failed
        """
        template = self.get_template(template_id)
        if not template:
            return None

        try:
            return {
                'subject': template['subject'].format(**variables),
                'body': template['body'].format(**variables)
            }
        except KeyError as e:
            logger.error(f"Missing template variable: {e}")
            return None

    # ==================== SENDING ====================

    async def send_from_template(
        self,
        member: MemberDB,
        template_id: str,
        variables: Dict[str, str],
    ) -> EmailResult:
        """Render a template and send it to the member."""
        rendered = self.render_template(template_id, variables)
        if not rendered:
            result = EmailResult(
                success=False,
                error=f"Failed to render template '{template_id}'",
                status=EmailStatus.FAILED
            )
            await self._log_email(member, template_id, template_id, result)
            return result

        message = EmailMessage(
            to=member.email,
            subject=rendered['subject'],
            body=rendered['body'],
            template_id=template_id,
            tags={"template": template_id},
        )
        result = self.client.send_email(message)
        await self._log_email(member, message.subject, template_id, result)
        return result

    async def send_welcome(self, member: MemberDB) -> EmailResult:
        return await self.send_from_template(member, EmailTemplate.WELCOME, {
            "name": member.realname or member.username or member.email,
            "username": member.username or "",
            "portal_url": self.portal_url,
        })

    async def send_negative_balance(self, member: MemberDB, balance: Decimal) -> EmailResult:
        return await self.send_from_template(member, EmailTemplate.NEGATIVE_BALANCE, {
            "name": member.realname or member.email,
            "balance": f"{balance:.2f}",
            "payments_id": member.payments_id or "",
            "payment_details": self._payment_details(member, abs(balance)),
            "portal_url": self.portal_url,
        })

    async def send_debt_warning(self, member: MemberDB, balance: Decimal, monthly_fee: Decimal) -> EmailResult:
        return await self.send_from_template(member, EmailTemplate.DEBT_WARNING, {
            "name": member.realname or member.email,
            "balance": f"{balance:.2f}",
            "monthly_fee": f"{monthly_fee:.2f}",
            "payments_id": member.payments_id or "",
            "payment_details": self._payment_details(member, abs(balance)),
            "portal_url": self.portal_url,
        })

    async def send_membership_suspended(self, member: MemberDB, reason: str) -> EmailResult:
        return await self.send_from_template(member, EmailTemplate.MEMBERSHIP_SUSPENDED, {
            "name": member.realname or member.email,
            "reason": reason or "-",
            "portal_url": self.portal_url,
        })

    def _payment_details(self, member: MemberDB, amount: Decimal) -> str:
        """Payment instructions block with the QR payment string, empty when unavailable."""
        if not member.payments_id:
            return ""
        spayd = self.qr_service.payment_descriptor(amount, member.payments_id, PAYMENT_MESSAGE)
        if not spayd:
            return ""
        return (
            '<p style="margin: 5px 0;"><strong>Účet:</strong> ' + self.qr_service.iban + '</p>'
            '<p style="margin: 5px 0;"><strong>QR platba:</strong> <code>' + spayd + '</code></p>'
        )

    async def _log_email(self, member: MemberDB, subject: str, template_id: str, result: EmailResult) -> None:
        """Record the delivery attempt in system_logs."""
        if result.status == EmailStatus.SKIPPED:
            return
        if not self.db:
            return

        metadata = {"recipient": member.email, "subject": subject, "template": template_id}
        if result.success:
            level = LogLevel.SUCCESS
            message = f"Email sent to {member.email}: {subject}"
        else:
            level = LogLevel.ERROR
            message = f"Failed to send email to {member.email}: {result.error}"
            metadata["error"] = result.error or ""

        await AuditLogger(self.db).log(
            AuditSubsystem.EMAIL,
            message,
            level=level,
            member_id=member.id,
            metadata=metadata,
        )

    def _register_default_templates(self) -> None:
        """Register default email templates."""

        self.register_template(
            EmailTemplate.WELCOME,
            "Vítej v Base48!",
            """
            <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2 style="color: #333;">Vítej!</h2>
                <p>Ahoj {name},</p>
                <p>tvoje členství bylo schváleno. Uživatelské jméno: <strong>{username}</strong></p>
                <p>Stav příspěvků a platební údaje najdeš v <a href="{portal_url}">členském portálu</a>.</p>
            </div>
            """
        )

        self.register_template(
            EmailTemplate.NEGATIVE_BALANCE,
            "Záporná bilance členského příspěvku",
            """
            <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2 style="color: #333;">Záporná bilance</h2>
                <p>Ahoj {name},</p>
                <p>tvoje bilance členských příspěvků je <strong>{balance} Kč</strong>.</p>
                <div style="background: #f5f5f5; padding: 15px; border-radius: 5px; margin: 20px 0;">
                    <p style="margin: 5px 0;"><strong>Variabilní symbol:</strong> {payments_id}</p>
                    {payment_details}
                </div>
                <p>Přehled plateb: <a href="{portal_url}">{portal_url}</a></p>
            </div>
            """
        )

        self.register_template(
            EmailTemplate.DEBT_WARNING,
            "⚠️ Upozornění na dluh za členství",
            """
            <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2 style="color: #333;">Upozornění na dluh</h2>
                <p>Ahoj {name},</p>
                <p>tvoje bilance je <strong>{balance} Kč</strong>, což je více než dvojnásobek
                měsíčního příspěvku ({monthly_fee} Kč).</p>
                <div style="background: #fff3cd; padding: 15px; border-radius: 5px; margin: 20px 0; border-left: 4px solid #ffc107;">
                    <p style="margin: 5px 0;"><strong>Variabilní symbol:</strong> {payments_id}</p>
                    {payment_details}
                </div>
                <p>Přehled plateb: <a href="{portal_url}">{portal_url}</a></p>
            </div>
            """
        )

        self.register_template(
            EmailTemplate.MEMBERSHIP_SUSPENDED,
            "Pozastavení členství v Base48",
            """
            <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2 style="color: #333;">Členství pozastaveno</h2>
                <p>Ahoj {name},</p>
                <p>tvoje členství bylo pozastaveno.</p>
                <p><strong>Důvod:</strong> {reason}</p>
                <p>Podrobnosti najdeš v <a href="{portal_url}">členském portálu</a>.</p>
            </div>
            """
        )
