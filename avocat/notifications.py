import logging
import smtplib
from email.message import EmailMessage

import requests

logger = logging.getLogger(__name__)


class ChatNotifier:
    """Posts purchase summaries to a chat incoming webhook (Google Chat)."""

    def __init__(self, webhook_url, timeout=10):
        self.webhook_url = webhook_url
        self.timeout = timeout

    def purchase_processed(self, entry):
        if not self.webhook_url:
            return False
        text = (
            "✅ Pago completado\n"
            f"Session ID: {entry.external_transaction_id}\n"
            f"Monto: {entry.total_amount / 100:.2f} {entry.currency.upper()}\n"
            f"Usuario: {entry.user_id} ({entry.customer_email or 'N/A'})\n"
            f"Documentos: {entry.documents_generated} generados, {entry.documents_failed} fallidos"
        )
        try:
            response = requests.post(self.webhook_url, json={"text": text}, timeout=self.timeout)
            response.raise_for_status()
            return True
        except requests.exceptions.RequestException as e:
            logger.warning(f"Could not send chat notification for purchase {entry.id}: {e}")
            return False


class MailerNotConfigured(RuntimeError):
    pass


class Mailer:
    def __init__(self, server, port, user, password, sender=None):
        self.server = server
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user

    @property
    def configured(self):
        return bool(self.server and self.user and self.password)

    def send(self, recipient, subject, body, html=None):
        if not self.configured:
            raise MailerNotConfigured("SMTP not configured via env variables")
        msg = EmailMessage()
        msg['From'] = self.sender
        msg['To'] = recipient
        msg['Subject'] = subject
        msg.set_content(body)
        if html:
            msg.add_alternative(html, subtype='html')
        with smtplib.SMTP(self.server, self.port) as s:
            s.starttls()
            s.login(self.user, self.password)
            s.send_message(msg)
        logger.info(f"Email '{subject}' sent to {recipient}")
