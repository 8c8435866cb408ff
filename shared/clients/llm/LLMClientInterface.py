from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.pipeline import ModelTier


class LLMClientInterface(ClientInterface):
    """Inference provider: file hosting for OCR'd documents plus chat completion."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._tier_models: dict[ModelTier, str] = {
            tier: self.get_config_val(f"MODEL_{tier.value}", default=default, val_type="string")
            for tier, default in self._get_default_models().items()
        }

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "llm"

    @abstractmethod
    def _get_default_models(self) -> dict[ModelTier, str]:
        """Returns the default model identifier of every tier, overridable by LLM_<ENGINE>_MODEL_<TIER>."""
        pass

    def get_model_for_tier(self, tier: ModelTier) -> str:
        return self._tier_models.get(tier) or self._tier_models[ModelTier.STANDARD]

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_files(self) -> str:
        """Returns the endpoint path for file uploads (e.g. "/v1/files")."""
        pass

    @abstractmethod
    def _get_endpoint_file(self, handle: str) -> str:
        """Returns the endpoint path of a single uploaded file."""
        pass

    @abstractmethod
    def _get_endpoint_file_reference(self, handle: str) -> str:
        """Returns the endpoint path resolving a file handle to a fetchable URL."""
        pass

    @abstractmethod
    def _get_endpoint_chat(self) -> str:
        """Returns the endpoint path for chat/completion requests."""
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_upload_payload(self, content: bytes, filename: str) -> tuple[dict, dict]:
        """Build the multipart upload body.

        Returns:
            tuple[dict, dict]: (files, data) for httpx.
        """
        pass

    @abstractmethod
    def get_chat_payload(self, model: str, messages: list[dict], max_tokens: int) -> dict:
        """Build the backend-specific request body for a chat/completion request.

        Args:
            model (str): Model identifier.
            messages (list[dict]): Chat messages, see build_messages().
            max_tokens (int): Upper bound of generated tokens.

        Returns:
            dict: JSON-serialisable request body.
        """
        pass

    @abstractmethod
    def get_document_content_part(self, document_url: str) -> dict:
        """Build the message content part that attaches a hosted document."""
        pass

    def build_messages(self, system_prompt: str, prompt: str, document_url: str | None = None) -> list[dict]:
        """Build a system + user message list, optionally attaching one document.

        Args:
            system_prompt (str): Stage system prompt; omitted when empty.
            prompt (str): The user instruction.
            document_url (str | None): Reference URL of a hosted document.

        Returns:
            list[dict]: Chat messages.
        """
        messages: list[dict] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        if document_url:
            messages.append({
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    self.get_document_content_part(document_url),
                ],
            })
        else:
            messages.append({"role": "user", "content": prompt})
        return messages

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_file_handle(self, response_data: dict) -> str:
        pass

    @abstractmethod
    def extract_file_reference(self, response_data: dict) -> str:
        pass

    @abstractmethod
    def extract_chat_response(self, response_data: dict) -> str:
        """Extract the assistant reply text from a raw chat API response.

        Raises:
            ValueError: If the response does not contain a reply.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_upload_file(self, content: bytes, filename: str) -> str:
        """Upload a document for OCR processing.

        Args:
            content (bytes): Raw PDF bytes.
            filename (str): File name reported to the provider.

        Returns:
            str: The provider file handle.

        Raises:
            ClientRequestError: If the upload is rejected.
        """
        files, data = self.get_upload_payload(content, filename)
        response = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_files(),
            files=files,
            data=data,
            raise_on_error=True,
        )
        handle = self.extract_file_handle(response.json())
        self.logging.info("[LLM] Uploaded %s (%d KB) as %s", filename, len(content) // 1024, handle)
        return handle

    async def do_fetch_reference(self, handle: str) -> str:
        """Resolve a file handle to a URL the chat endpoint can fetch.

        Raises:
            ClientRequestError: If the handle is unknown or expired (stale).
        """
        response = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_file_reference(handle),
            raise_on_error=True,
        )
        return self.extract_file_reference(response.json())

    async def do_delete_file(self, handle: str) -> None:
        """Delete a hosted file.

        Raises:
            ClientRequestError: If the provider rejects the deletion.
        """
        await self.do_request(
            method="DELETE",
            endpoint=self._get_endpoint_file(handle),
            raise_on_error=True,
        )
        self.logging.debug("[LLM] Deleted file %s", handle)

    async def do_chat(self, model: str, messages: list[dict], max_tokens: int) -> str:
        """Send a chat/completion request and return the assistant reply text.

        Args:
            model (str): Model identifier.
            messages (list[dict]): Chat messages.
            max_tokens (int): Upper bound of generated tokens.

        Returns:
            str: The assistant reply text.

        Raises:
            ClientRequestError: If the HTTP request fails.
            ValueError: If the response does not contain a valid reply.
        """
        body = self.get_chat_payload(model, messages, max_tokens)
        response = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_chat(),
            json=body,
            raise_on_error=True,
        )
        return self.extract_chat_response(response.json())
