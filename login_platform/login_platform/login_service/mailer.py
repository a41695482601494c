import logging
import smtplib
import socket
import ssl
import time
from email.mime.text import MIMEText

from .config import Settings
from .errors import MailDeliveryError

logger = logging.getLogger(__name__)

VERIFICATION_SUBJECT = "Your sign-up verification code"

VERIFICATION_TEXT = """Hello,

Your verification code is {code}.

The code is valid for {minutes} minutes. If you didn't request this, you can
safely ignore this email.
"""


def _within_deadline(server: smtplib.SMTP, deadline: float) -> None:
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise socket.timeout("SMTP exchange exceeded MAIL_TIMEOUT_SECONDS")
    if server.sock is not None:
        server.sock.settimeout(remaining)


class Mailer:
    def __init__(self, settings: Settings):
        self._settings = settings

    def _create_message(self, to_email: str, subject: str, text_body: str) -> MIMEText:
        msg = MIMEText(text_body, "plain")
        msg["Subject"] = subject
        msg["From"] = self._settings.MAIL_FROM
        msg["To"] = to_email
        return msg

    def _send(self, to_email: str, message: MIMEText) -> None:
        """
        Hand `message` to the SMTP server.

        MAIL_TIMEOUT_SECONDS bounds the whole exchange, not each socket call:
        every step only gets the time left on the deadline.
        """
        s = self._settings
        timeout = s.MAIL_TIMEOUT_SECONDS
        deadline = time.monotonic() + timeout
        try:
            if s.SMTP_USE_TLS and not s.SMTP_STARTTLS:
                # Implicit TLS (port 465)
                context = ssl.create_default_context()
                with smtplib.SMTP_SSL(s.SMTP_HOST, s.SMTP_PORT, context=context, timeout=timeout) as server:
                    if s.SMTP_USER:
                        _within_deadline(server, deadline)
                        server.login(s.SMTP_USER, s.SMTP_PASSWORD or "")
                    _within_deadline(server, deadline)
                    server.send_message(message)
            else:
                # STARTTLS (port 587) or plain
                with smtplib.SMTP(s.SMTP_HOST, s.SMTP_PORT, timeout=timeout) as server:
                    if s.SMTP_STARTTLS:
                        _within_deadline(server, deadline)
                        server.starttls(context=ssl.create_default_context())
                    if s.SMTP_USER:
                        _within_deadline(server, deadline)
                        server.login(s.SMTP_USER, s.SMTP_PASSWORD or "")
                    _within_deadline(server, deadline)
                    server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            # OSError covers connection refusals and socket timeouts
            logger.error("Failed to send email to %s: %s", to_email, e)
            raise MailDeliveryError(str(e)) from e

        logger.info("Email sent to %s", to_email)

    def send_verification_code(self, to_email: str, code: str, ttl_seconds: int) -> None:
        """
        Send the sign-up verification code.

        Raises:
            MailDeliveryError: the SMTP server could not be reached in time or refused the message
        """
        if not self._settings.MAIL_ENABLED:
            logger.warning("Mail disabled, verification code for %s not sent", to_email)
            logger.debug("[DEV] Verification code for %s: %s", to_email, code)
            return

        if not self._settings.SMTP_HOST:
            logger.error("SMTP host not configured")
            raise MailDeliveryError("SMTP host not configured")

        body = VERIFICATION_TEXT.format(code=code, minutes=max(1, ttl_seconds // 60))
        self._send(to_email, self._create_message(to_email, VERIFICATION_SUBJECT, body))
