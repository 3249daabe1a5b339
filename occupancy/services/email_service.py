"""
Occupancy Transition Service
Email Service — default transport.

When SMTP is not configured, emails are logged but not sent (dev/test mode).

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address

The NotificationDispatch row written by the dispatcher is the audit record;
this class only delivers. It makes exactly one SMTP attempt per call.
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

from flask import current_app

from occupancy.core.exceptions import TransportError
from occupancy.services.collaborators import Artifact, DispatchOutcome, EmailTransport

logger = logging.getLogger(__name__)


class EmailService(EmailTransport):
    """
    SMTP transport.

    In development/test mode (no MAIL_SERVER configured), the message is
    logged and reported as delivered without touching the network.
    """

    @staticmethod
    def is_configured() -> bool:
        """Check if SMTP is configured."""
        return bool(current_app.config.get("MAIL_SERVER"))

    def send(self, artifact: Artifact, primary: list[str], cc: list[str]) -> DispatchOutcome:
        message_id = make_msgid(domain="occupancy")

        if not self.is_configured():
            # Dev/test mode: log only
            logger.info(
                "Email (dev mode): to=%s cc=%s subject='%s' template=%s attachments=%d",
                ",".join(primary), ",".join(cc), artifact.subject, artifact.template_type,
                len(artifact.attachments),
            )
            return DispatchOutcome(delivered=True, message_id=message_id)

        try:
            self._send_smtp(artifact=artifact, primary=primary, cc=cc, message_id=message_id)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email failed: to=%s error=%s", ",".join(primary), exc)
            raise TransportError(f"SMTP delivery failed: {exc}") from exc

        logger.info("Email sent: to=%s subject='%s'", ",".join(primary), artifact.subject)
        return DispatchOutcome(delivered=True, message_id=message_id)

    @staticmethod
    def _send_smtp(*, artifact: Artifact, primary: list[str], cc: list[str], message_id: str) -> None:
        """Actually send via SMTP."""
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("mixed" if artifact.attachments else "alternative")
        msg["Subject"] = artifact.subject
        msg["From"] = sender
        msg["To"] = ", ".join(primary)
        if cc:
            msg["Cc"] = ", ".join(cc)
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(artifact.body, "html"))
        for attachment in artifact.attachments:
            part = MIMEText(attachment.content, attachment.subtype)
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            msg.attach(part)

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg, to_addrs=list(primary) + list(cc))
