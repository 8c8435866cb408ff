from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.clients.mail.models.MailMessage import MailAttachment, SendResult
from shared.helper.HelperConfig import HelperConfig


class MailClientInterface(ClientInterface):
    """Outbound mail delivery. Sending never raises; failures come back as SendResult."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.from_address = self.get_config_val("FROM_ADDRESS", default=None, val_type="string")
        self.from_name = self.get_config_val("FROM_NAME", default="AskDoc", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_client_type(self) -> str:
        return "mail"

    def get_sender_header(self) -> str:
        return f"{self.from_name} <{self.from_address}>" if self.from_name else self.from_address

    ##########################################
    ############### REQUESTS #################
    ##########################################

    @abstractmethod
    async def _do_send_message(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: list[MailAttachment],
    ) -> None:
        """Deliver one plain-text message.

        Raises:
            Exception: Any delivery failure.
        """
        pass

    async def do_send(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: list[MailAttachment] | None = None,
    ) -> SendResult:
        """Send a plain-text mail.

        Args:
            to (str): Recipient address.
            subject (str): Subject line.
            body (str): Plain-text body.
            attachments (list[MailAttachment] | None): Optional attachments.

        Returns:
            SendResult: success flag and error message.
        """
        self.logging.info("[MAIL] Sending mail to %s via %s", to, self.get_engine_name())
        try:
            await self._do_send_message(to, subject, body, attachments or [])
        except Exception as e:
            self.logging.error("[MAIL] Failed to send mail to %s: %s", to, e)
            return SendResult(success=False, error=str(e) or e.__class__.__name__)
        self.logging.info("[MAIL] Mail sent to %s", to, color="green")
        return SendResult(success=True)

    async def do_verify(self) -> bool:
        """Verify that the mail backend accepts connections."""
        try:
            response = await self.do_healthcheck()
        except Exception as e:
            self.logging.error("[MAIL] Connection check failed: %s", e)
            return False
        return response.is_success
