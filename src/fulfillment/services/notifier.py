"""Outbound email notifiers.

Every notifier exposes one coroutine, ``send``, returning a delivery id
(the provider's message id) or raising DeliveryError. ``retryable`` on the
error tells the caller whether a later attempt could succeed.

Backends:
- SESNotifier: Amazon SES via boto3
- SMTPNotifier: any SMTP server (Gmail with an app password by default)
- ConsoleNotifier: logs the message only, for local development
"""

import asyncio
import logging
import smtplib
import ssl
import uuid
from email.message import EmailMessage
from email.utils import formataddr, formatdate, make_msgid
from typing import Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from fulfillment.config import FulfillmentSettings
from fulfillment.models import DeliveryError

logger = logging.getLogger(__name__)

# SES error codes a retry cannot fix
SES_PERMANENT_ERRORS: set[str] = {
    "MessageRejected",
    "MailFromDomainNotVerifiedException",
    "InvalidParameterValue",
}


class Notifier(Protocol):
    """Delivery contract used by the fulfillment executor and the mail relay."""

    async def send(
        self,
        recipient: str,
        subject: str,
        html_body: str | None,
        text_body: str | None,
    ) -> str: ...


class SESNotifier:
    """Send mail through Amazon SES."""

    def __init__(self, sender: str, client: Any | None = None) -> None:
        self._sender = sender
        self._client = client or boto3.client("ses")

    async def send(
        self,
        recipient: str,
        subject: str,
        html_body: str | None,
        text_body: str | None,
    ) -> str:
        body: dict[str, Any] = {}
        if text_body:
            body["Text"] = {"Data": text_body, "Charset": "UTF-8"}
        if html_body:
            body["Html"] = {"Data": html_body, "Charset": "UTF-8"}

        try:
            response = await asyncio.to_thread(
                self._client.send_email,
                Source=self._sender,
                Destination={"ToAddresses": [recipient]},
                Message={
                    "Subject": {"Data": subject, "Charset": "UTF-8"},
                    "Body": body,
                },
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error("SES send_email failed (%s): %s", error_code, e)
            raise DeliveryError(
                f"SES rejected message: {error_code}",
                retryable=error_code not in SES_PERMANENT_ERRORS,
            ) from e
        except BotoCoreError as e:
            logger.error("SES send_email transport error: %s", e)
            raise DeliveryError(f"SES unavailable: {e}", retryable=True) from e

        message_id: str = response["MessageId"]
        logger.info("Email sent successfully: %s", message_id)
        return message_id


class SMTPNotifier:
    """Send mail over SMTP (implicit TLS or STARTTLS).

    smtplib is blocking, so each send runs in a worker thread.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str | None,
        password: str | None,
        sender: str,
        sender_name: str | None = None,
        use_ssl: bool = True,
        timeout: int = 30,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.sender_name = sender_name
        self.use_ssl = use_ssl
        self.timeout = timeout

    def _build_message(
        self,
        recipient: str,
        subject: str,
        html_body: str | None,
        text_body: str | None,
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((self.sender_name, self.sender)) if self.sender_name else self.sender
        msg["To"] = recipient
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid(domain=self.sender.split("@")[-1])

        if text_body:
            msg.set_content(text_body)
            if html_body:
                msg.add_alternative(html_body, subtype="html")
        elif html_body:
            msg.set_content(html_body, subtype="html")
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        context = ssl.create_default_context()
        if self.use_ssl:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=context) as server:
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.ehlo()
                server.starttls(context=context)
                server.ehlo()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)

    async def send(
        self,
        recipient: str,
        subject: str,
        html_body: str | None,
        text_body: str | None,
    ) -> str:
        try:
            # header folding rejects CR/LF in names like the subject
            msg = self._build_message(recipient, subject, html_body, text_body)
            await asyncio.to_thread(self._send_sync, msg)
        except ValueError as e:
            logger.error("SMTP message for %s could not be built: %s", recipient, e)
            raise DeliveryError(f"Invalid message: {e}", retryable=False) from e
        except smtplib.SMTPAuthenticationError as e:
            logger.error("SMTP authentication failed for %s: %s", self.username, e)
            raise DeliveryError("SMTP authentication failed", retryable=True) from e
        except smtplib.SMTPRecipientsRefused as e:
            logger.error("SMTP recipient refused %s: %s", recipient, e)
            raise DeliveryError(f"Recipient refused: {recipient}", retryable=False) from e
        except smtplib.SMTPResponseException as e:
            logger.error("SMTP error %s: %s", e.smtp_code, e.smtp_error)
            raise DeliveryError(
                f"SMTP error {e.smtp_code}", retryable=e.smtp_code < 500
            ) from e
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP transport error: %s", e)
            raise DeliveryError(f"SMTP unavailable: {e}", retryable=True) from e

        message_id = str(msg["Message-ID"])
        logger.info("Email sent successfully: %s", message_id)
        return message_id


class ConsoleNotifier:
    """Log messages instead of sending them."""

    async def send(
        self,
        recipient: str,
        subject: str,
        html_body: str | None,
        text_body: str | None,
    ) -> str:
        message_id = f"console-{uuid.uuid4().hex[:12]}"
        logger.info("[CONSOLE EMAIL] %s -> %s | %s", message_id, recipient, subject)
        return message_id


def build_notifier(settings: FulfillmentSettings) -> Notifier:
    """Create the notifier selected by ``NOTIFIER_BACKEND``.

    Raises:
        ValueError: On an unknown backend or missing SMTP credentials.
    """
    backend = settings.notifier_backend
    logger.info("Notifier backend: %s", backend)

    if backend == "ses":
        sender = formataddr((settings.mail_from_name, settings.mail_from))
        return SESNotifier(sender=sender)
    if backend == "smtp":
        if not settings.smtp_username or not settings.smtp_password:
            raise ValueError("SMTP_USERNAME and SMTP_PASSWORD are required for the smtp notifier")
        return SMTPNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=settings.mail_from,
            sender_name=settings.mail_from_name,
            use_ssl=settings.smtp_use_ssl,
            timeout=settings.smtp_timeout,
        )
    if backend == "console":
        return ConsoleNotifier()
    raise ValueError(f"Unknown notifier backend: {backend!r}")
