import base64

from shared.clients.mail.MailClientInterface import MailClientInterface
from shared.clients.mail.models.MailMessage import MailAttachment
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class MailClientResend(MailClientInterface):
    """Delivery through the Resend HTTP API."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="https://api.resend.com", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "Resend"

    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="API_KEY", val_type="string", default=None),
            EnvConfig(env_key="FROM_ADDRESS", val_type="string", default=None),
        ]

    def _get_auth_header(self) -> dict:
        return {"Authorization": f"Bearer {self._api_key}"}

    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/domains"

    def _get_endpoint_send(self) -> str:
        return "/emails"

    ################ PAYLOAD BUILDER ##################
    def get_send_payload(self, to: str, subject: str, body: str, attachments: list[MailAttachment]) -> dict:
        payload: dict = {
            "from": self.get_sender_header(),
            "to": [to],
            "subject": subject,
            "text": body,
        }
        if attachments:
            payload["attachments"] = [
                {"filename": a.filename, "content": base64.b64encode(a.content).decode("ascii")}
                for a in attachments
            ]
        return payload

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def _do_send_message(self, to: str, subject: str, body: str, attachments: list[MailAttachment]) -> None:
        response = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_send(),
            json=self.get_send_payload(to, subject, body, attachments),
            raise_on_error=True,
        )
        self.logging.debug("[MAIL] Resend message id: %s", response.json().get("id", ""))
