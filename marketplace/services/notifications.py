import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

logger = logging.getLogger(__name__)


class EmailNotifier:
    """Best-effort payout emails; a failed send is logged and dropped."""

    def __init__(self, host=None, port=587, user=None, password=None, sender=None):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user

    @classmethod
    def from_config(cls, config):
        return cls(
            host=config.get('SMTP_HOST'),
            port=config.get('SMTP_PORT', 587),
            user=config.get('SMTP_USER'),
            password=config.get('SMTP_PASSWORD'),
            sender=config.get('MAIL_FROM'),
        )

    def send(self, to, subject, body):
        if not self.host or not to:
            logger.debug('Email skipped (no SMTP host or recipient): %s', subject)
            return False

        msg = MIMEMultipart()
        msg['From'] = self.sender
        msg['To'] = to
        msg['Subject'] = subject
        msg.attach(MIMEText(body, 'plain', 'utf-8'))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as server:
                server.starttls()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
            logger.info('Email sent to %s: %s', to, subject)
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error('Error sending email to %s: %s', to, e)
            return False

    def payout_processed(self, payout):
        return self.send(
            self._recipient(payout),
            'Your payout is on its way',
            f"Payout {payout.id} of ${payout.amount} is being processed.\n"
            f"Reference: {payout.payment_reference or '-'}"
        )

    def payout_failed(self, payout):
        return self.send(
            self._recipient(payout),
            'Your payout could not be processed',
            f"Payout {payout.id} of ${payout.amount} failed.\n"
            f"Reason: {payout.failure_reason}\n"
            "The related earnings are available for your next payout."
        )

    @staticmethod
    def _recipient(payout):
        vendor = payout.vendor
        if vendor is None or vendor.user is None:
            return None
        return vendor.user.email
