import base64
import logging
import smtplib
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from string import Template

import requests
from sqlalchemy.orm import Session

from vilo.core.config import settings
from vilo.models.email_log import EmailLog
from vilo.models.email_template import EmailTemplate
from vilo.services.refund_templates import REFUND_TEMPLATES

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    ok: bool
    provider: str
    error: str = ""
    subject: str = ""
    body: str = ""
    transport_failed: bool = False  # rendered fine, the mail server refused or timed out


class TemplateEmailProvider:
    """Renders the admin-managed template row for `template_key` and sends it."""

    name = "template"

    def __init__(self, db: Session):
        self.db = db

    def deliver(self, to_email: str, template_key: str, variables: dict) -> DeliveryResult:
        tpl = self.db.get(EmailTemplate, template_key)
        if not tpl or not tpl.is_active:
            return DeliveryResult(False, self.name, f"template '{template_key}' not found or inactive")
        try:
            subject = Template(tpl.subject).substitute(variables)
            body = Template(tpl.body).substitute(variables)
        except (KeyError, ValueError) as e:
            return DeliveryResult(False, self.name, f"template '{template_key}' render error: {e}")
        return _send(self.name, to_email, subject, body)


class FallbackEmailProvider:
    """Built-in copy from refund_templates; missing variables render as-is."""

    name = "fallback"

    def __init__(self, templates: dict[str, dict[str, str]] | None = None):
        self.templates = templates if templates is not None else REFUND_TEMPLATES

    def deliver(self, to_email: str, template_key: str, variables: dict) -> DeliveryResult:
        tpl = self.templates.get(template_key)
        if not tpl:
            return DeliveryResult(False, self.name, f"no built-in template '{template_key}'")
        subject = Template(tpl["subject"]).safe_substitute(variables)
        body = Template(tpl["body"]).safe_substitute(variables)
        return _send(self.name, to_email, subject, body)


def _send(provider: str, to_email: str, subject: str, body: str) -> DeliveryResult:
    try:
        send_email(to_email, subject, body, [])
    except Exception as e:
        return DeliveryResult(False, provider, str(e), subject, body, transport_failed=True)
    return DeliveryResult(True, provider, "", subject, body)


class EmailChannel:
    """Tries each provider in order until one delivers.

    Only template problems move on to the next provider. A transport failure
    ends the chain, since every provider sends through the same transport.
    Every attempt is logged. If all providers fail and a body was rendered, the
    EmailLog row stays `failed` so process_pending_emails can retry it.
    """

    def __init__(self, db: Session, providers: list | None = None):
        self.db = db
        self.providers = providers if providers is not None else [TemplateEmailProvider(db), FallbackEmailProvider()]

    def send(self, to_email: str, template_key: str, variables: dict, related_refund_id: str = "") -> DeliveryResult:
        last = DeliveryResult(False, "", "no providers configured")
        rendered: DeliveryResult | None = None
        for provider in self.providers:
            result = provider.deliver(to_email, template_key, variables)
            if result.ok:
                self._log(to_email, template_key, result, "sent", related_refund_id)
                return result
            logger.warning("Email provider %s failed for %s (%s): %s", result.provider, to_email, template_key, result.error)
            if result.body:
                rendered = result
            last = result
            if result.transport_failed:
                break
        if rendered:
            self._log(to_email, template_key, rendered, "failed", related_refund_id)
        return last

    def _log(self, to_email: str, template_key: str, result: DeliveryResult, status: str, related_refund_id: str):
        self.db.add(EmailLog(
            id=str(uuid.uuid4()),
            to_email=to_email,
            subject=result.subject[:200],
            body=result.body,
            template_key=template_key,
            provider=result.provider,
            status=status,
            related_refund_id=related_refund_id,
            sent_at=datetime.now(timezone.utc) if status == "sent" else None,
        ))
        self.db.commit()


def send_email(to_email: str, subject: str, body: str, attachments: list[tuple[str, bytes, str]]):
    """Send email via SendGrid if configured, otherwise SMTP (MailHog recommended for local)."""

    if settings.SENDGRID_API_KEY:
        _send_via_sendgrid(to_email, subject, body, attachments)
        return

    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    for filename, content, mime in attachments:
        maintype, subtype = (mime.split("/", 1) + ["octet-stream"])[:2]
        msg.add_attachment(content, maintype=maintype, subtype=subtype, filename=filename)

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.EMAIL_TIMEOUT_SECONDS) as smtp:
        if settings.SMTP_USERNAME:
            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        smtp.send_message(msg)


def _send_via_sendgrid(to_email: str, subject: str, body: str, attachments: list[tuple[str, bytes, str]]):
    payload = {
        "personalizations": [{"to": [{"email": to_email}]}],
        "from": {"email": settings.SENDGRID_FROM_EMAIL or settings.SMTP_FROM},
        "subject": subject,
        "content": [{"type": "text/plain", "value": body}],
    }
    if attachments:
        payload["attachments"] = [
            {"content": base64.b64encode(content).decode("utf-8"), "type": mime, "filename": filename, "disposition": "attachment"}
            for filename, content, mime in attachments
        ]

    r = requests.post(
        "https://api.sendgrid.com/v3/mail/send",
        json=payload,
        headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
        timeout=settings.EMAIL_TIMEOUT_SECONDS,
    )
    if r.status_code >= 400:
        raise RuntimeError(f"SendGrid error {r.status_code}: {r.text}")


def process_pending_emails(db: Session, limit: int = 50) -> dict:
    """Retry up to `limit` queued or failed emails that have a stored body. Returns counts."""
    pending = (
        db.query(EmailLog)
        .filter(EmailLog.status.in_(["queued", "failed"]), EmailLog.body.isnot(None), EmailLog.body != "")
        .order_by(EmailLog.created_at.asc())
        .limit(limit)
        .all()
    )
    sent, failed = 0, 0
    for log in pending:
        try:
            send_email(log.to_email, log.subject, log.body, [])
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            sent += 1
        except Exception:
            logger.warning("Retry of email %s to %s failed", log.id, log.to_email, exc_info=True)
            log.status = "failed"
            failed += 1
    if pending:
        db.commit()
    return {"processed": len(pending), "sent": sent, "failed": failed}
