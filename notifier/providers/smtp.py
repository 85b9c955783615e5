"""SMTP transport for email delivery.

A thin wrapper around Python's smtplib with support for TLS/SSL,
authentication, and proper connection lifecycle management.
"""

import smtplib
import ssl
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Callable, Optional

from notifier.logging import get_logger

from .base import Transport
from .exceptions import TransportConnectionError, TransportError, TransportTimeoutError
from .models import EmailEnvelope, TransportReceipt

logger = get_logger(__name__, component="provider")


class SmtpTransport(Transport):
    """Sends email through an SMTP relay.

    Port 465 uses implicit TLS; other ports upgrade with STARTTLS when
    ``use_tls`` is set. Designed to be easily mockable for testing through
    the factory arguments.
    """

    name = "smtp"
    channel = "email"

    def __init__(
        self,
        host: Optional[str],
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: int = 30,
        smtp_factory: Optional[Callable] = None,
        smtp_ssl_factory: Optional[Callable] = None,
    ):
        """Initialize SMTP transport.

        Args:
            host: SMTP server hostname
            port: SMTP server port
            user: Username for authentication
            password: Password for authentication
            use_tls: Whether to use STARTTLS on non-465 ports
            timeout: Socket timeout in seconds
            smtp_factory: Factory function for creating SMTP instances (for mocking)
            smtp_ssl_factory: Factory function for creating SMTP_SSL instances (for mocking)
        """
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    def send(self, message: EmailEnvelope) -> TransportReceipt:
        """Send an email via SMTP.

        Returns:
            Receipt carrying the Message-ID stamped on the message

        Raises:
            TransportError: If message delivery fails
        """
        email_message = build_email_message(message, domain=self._message_id_domain(message))
        message_id = email_message["Message-ID"]

        smtp = None
        try:
            smtp = self._connect()
            smtp.send_message(email_message)
            logger.debug(f"Message {message_id} accepted by {self.host}")
            return TransportReceipt(
                message_id=message_id, response={"host": self.host, "port": self.port}
            )
        except TransportError:
            raise
        except smtplib.SMTPException as e:
            raise TransportError(f"SMTP error during message delivery: {e}") from e
        except TimeoutError as e:
            raise TransportTimeoutError(f"SMTP connection to {self.host} timed out: {e}") from e
        except OSError as e:
            raise TransportConnectionError(f"Network error during SMTP connection: {e}") from e
        finally:
            self._quit(smtp)

    def check_health(self) -> None:
        """Open a session and issue NOOP.

        Raises:
            TransportError: If the relay cannot be reached or rejects the login
        """
        smtp = None
        try:
            smtp = self._connect()
            code, _ = smtp.noop()
            if code != 250:
                raise TransportError(f"SMTP NOOP returned {code}")
        except TransportError:
            raise
        except (smtplib.SMTPException, OSError) as e:
            raise TransportConnectionError(f"SMTP health check failed: {e}") from e
        finally:
            self._quit(smtp)

    def _connect(self):
        if self.port == 465:
            logger.debug(f"Connecting to {self.host}:{self.port} with implicit TLS")
            context = ssl.create_default_context()
            smtp = self.smtp_ssl_factory(self.host, self.port, timeout=self.timeout, context=context)
        else:
            logger.debug(f"Connecting to {self.host}:{self.port}")
            smtp = self.smtp_factory(self.host, self.port, timeout=self.timeout)
            if self.use_tls:
                logger.debug("Upgrading connection with STARTTLS")
                smtp.starttls(context=ssl.create_default_context())

        if self.user and self.password:
            smtp.login(self.user, self.password)
        return smtp

    def _quit(self, smtp) -> None:
        if smtp is None:
            return
        try:
            smtp.quit()
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(f"Error closing SMTP connection: {e}")

    def _message_id_domain(self, message: EmailEnvelope) -> Optional[str]:
        _, _, domain = message.sender_email.partition("@")
        return domain or self.host


def build_email_message(message: EmailEnvelope, domain: Optional[str] = None) -> EmailMessage:
    """Construct a multipart EmailMessage (plain text with HTML alternative)."""
    email_message = EmailMessage()
    email_message["Subject"] = message.subject
    email_message["From"] = message.sender
    email_message["To"] = message.to
    email_message["Message-ID"] = make_msgid(domain=domain)
    if message.reply_to:
        email_message["Reply-To"] = message.reply_to

    email_message.set_content(message.text or "")
    if message.html:
        email_message.add_alternative(message.html, subtype="html")
    return email_message
