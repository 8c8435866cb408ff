import asyncio
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import make_msgid

import httpx

from shared.clients.mail.MailClientInterface import MailClientInterface
from shared.clients.mail.models.MailMessage import MailAttachment
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class MailClientSmtp(MailClientInterface):
    """SMTP delivery. smtplib is blocking, so every session runs in a worker thread."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._host = self.get_config_val("HOST", default=None, val_type="string")
        self._port = int(self.get_config_val("PORT", default=587, val_type="number"))
        self._username = self.get_config_val("USERNAME", default="", val_type="string")
        self._password = self.get_config_val("PASSWORD", default="", val_type="string")
        # implicit TLS (port 465) vs. STARTTLS upgrade
        self._use_ssl = self.get_config_val("USE_SSL", default=self._port == 465, val_type="bool")
        self._use_starttls = self.get_config_val("USE_STARTTLS", default=not self._use_ssl, val_type="bool")
        self._verify_tls = self.get_config_val("VERIFY_TLS", default=True, val_type="bool")
        self._booted = False

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "Smtp"

    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="HOST", val_type="string", default=None),
            EnvConfig(env_key="PORT", val_type="number", default=587),
            EnvConfig(env_key="FROM_ADDRESS", val_type="string", default=None),
        ]

    def _get_auth_header(self) -> dict:
        return {}

    def _get_base_url(self) -> str:
        return f"smtp://{self._host}:{self._port}"

    def _get_endpoint_healthcheck(self) -> str:
        return ""

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        # one SMTP session per message, nothing to keep open
        self._booted = True

    async def close(self) -> None:
        self._booted = False

    def is_booted(self) -> bool:
        return self._booted

    def _tls_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self._verify_tls:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _open_session(self) -> smtplib.SMTP:
        if self._use_ssl:
            session: smtplib.SMTP = smtplib.SMTP_SSL(
                self._host, self._port, timeout=self.timeout, context=self._tls_context()
            )
        else:
            session = smtplib.SMTP(self._host, self._port, timeout=self.timeout)
        try:
            if not self._use_ssl and self._use_starttls:
                session.starttls(context=self._tls_context())
            if self._username:
                session.login(self._username, self._password)
        except (OSError, smtplib.SMTPException):
            session.close()
            raise
        return session

    def _build_message(self, to: str, subject: str, body: str, attachments: list[MailAttachment]) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.get_sender_header()
        message["To"] = to
        message["Subject"] = subject
        message["Message-ID"] = make_msgid()
        message.set_content(body)
        for attachment in attachments:
            maintype, _, subtype = attachment.content_type.partition("/")
            message.add_attachment(
                attachment.content,
                maintype=maintype or "application",
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return message

    def _send_blocking(self, message: EmailMessage) -> None:
        with self._open_session() as session:
            session.send_message(message)

    def _verify_blocking(self) -> None:
        with self._open_session() as session:
            status, _ = session.noop()
            if status != 250:
                raise smtplib.SMTPResponseException(status, b"NOOP rejected")

    async def _do_send_message(self, to: str, subject: str, body: str, attachments: list[MailAttachment]) -> None:
        message = self._build_message(to, subject, body, attachments)
        await asyncio.to_thread(self._send_blocking, message)

    async def do_verify(self) -> bool:
        try:
            await asyncio.to_thread(self._verify_blocking)
        except (OSError, smtplib.SMTPException) as e:
            self.logging.error("[MAIL] SMTP connection to %s failed: %s", self._get_base_url(), e)
            return False
        self.logging.info("[MAIL] SMTP connection to %s verified", self._get_base_url())
        return True
