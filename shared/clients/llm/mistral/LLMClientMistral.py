from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.pipeline import ModelTier


class LLMClientMistral(LLMClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="https://api.mistral.ai", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default=None, val_type="string")
        self._url_expiry_hours = self.get_config_val("URL_EXPIRY_HOURS", default=24, val_type="number")
        self._safe_prompt = self.get_config_val("SAFE_PROMPT", default=True, val_type="bool")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Mistral"

    def _get_default_models(self) -> dict[ModelTier, str]:
        return {
            ModelTier.STANDARD: "mistral-small-latest",
            ModelTier.PRO: "mistral-medium-latest",
            ModelTier.MAX: "mistral-large-latest",
        }

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="API_KEY", val_type="string", default=None),
            EnvConfig(env_key="BASE_URL", val_type="string", default="https://api.mistral.ai"),
            EnvConfig(env_key="URL_EXPIRY_HOURS", val_type="number", default=24),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {"Authorization": f"Bearer {self._api_key}"}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/v1/models"

    def _get_endpoint_files(self) -> str:
        return "/v1/files"

    def _get_endpoint_file(self, handle: str) -> str:
        return f"/v1/files/{handle}"

    def _get_endpoint_file_reference(self, handle: str) -> str:
        return f"/v1/files/{handle}/url?expiry={int(self._url_expiry_hours)}"

    def _get_endpoint_chat(self) -> str:
        return "/v1/chat/completions"

    ################ PAYLOAD BUILDER ##################
    def get_upload_payload(self, content: bytes, filename: str) -> tuple[dict, dict]:
        """Build the Mistral file upload body.

        Files uploaded with purpose "ocr" are OCR-processed by the provider and
        can be attached to chat requests as document_url parts.
        """
        files = {"file": (filename, content, "application/pdf")}
        data = {"purpose": "ocr"}
        return files, data

    def get_chat_payload(self, model: str, messages: list[dict], max_tokens: int) -> dict:
        return {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "safe_prompt": self._safe_prompt,
        }

    def get_document_content_part(self, document_url: str) -> dict:
        return {"type": "document_url", "document_url": document_url}

    ##########################################
    ################# OTHER ##################
    ##########################################

    def extract_file_handle(self, response_data: dict) -> str:
        file_id = response_data.get("id")
        if not file_id:
            raise ValueError(
                "Mistral upload response does not contain a file id. "
                "Response keys: %s" % list(response_data.keys())
            )
        return str(file_id)

    def extract_file_reference(self, response_data: dict) -> str:
        url = response_data.get("url")
        if not url:
            raise ValueError(
                "Mistral signed url response does not contain a url. "
                "Response keys: %s" % list(response_data.keys())
            )
        return url

    def extract_chat_response(self, response_data: dict) -> str:
        """Extract the assistant reply text from a Mistral chat completion.

        Content is either a string or a list of typed chunks; text chunks are
        concatenated.

        Raises:
            ValueError: If the response does not contain a message.
        """
        choices = response_data.get("choices") or []
        if not choices:
            raise ValueError(
                "Mistral chat response does not contain choices. "
                "Response keys: %s" % list(response_data.keys())
            )
        content = (choices[0].get("message") or {}).get("content")
        if isinstance(content, list):
            content = "".join(
                chunk.get("text", "") for chunk in content
                if isinstance(chunk, dict) and chunk.get("type") == "text"
            )
        if not content:
            raise ValueError("Mistral chat response contains an empty message.")
        return content
