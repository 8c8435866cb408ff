from abc import ABC, abstractmethod
from typing import Any

import httpx
from httpx._types import QueryParamTypes, RequestContent, RequestData, RequestFiles

from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class ClientRequestError(Exception):
    """Raised by do_request(raise_on_error=True) for non-2xx responses."""

    def __init__(self, url: str, status_code: int, body: str = ""):
        self.url = url
        self.status_code = status_code
        self.body = body
        super().__init__(f"Request to {url} failed with status {status_code}")

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class ClientInterface(ABC):
    """Base of every external backend client (inference provider, mail sender).

    Settings are read as ``{CLIENT_TYPE}_{ENGINE}_{KEY}`` and validated on
    construction. HTTP engines talk through the shared httpx client opened by
    boot(); engines on another protocol override boot(), close() and the
    connection check.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.timeout = helper_config.get_number_val(f"{self.get_client_type().upper()}_TIMEOUT", default=120.0)

        self._client: httpx.AsyncClient | None = None
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """Read every required setting once so a missing one fails at construction.

        Raises:
            ValueError: If a required setting is missing or has the wrong type.
        """
        for config in self._get_required_config():
            self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    def is_booted(self) -> bool:
        return self._client is not None

    ##########################################
    ################ GETTER ##################
    ##########################################

    def get_client_type(self) -> str:
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        """Settings prefix of the client family: "llm" or "mail"."""
        pass

    def get_engine_name(self) -> str:
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        """Engine part of the settings keys, e.g. "Mistral" or "Smtp"."""
        pass

    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        """Settings that must resolve before the client can be used."""
        pass

    def _get_config_key_name(self, raw_key: str) -> str:
        return f"{self.get_client_type().upper()}_{self.get_engine_name().upper()}_{raw_key.upper()}"

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """Read one engine setting, e.g. raw_key "API_KEY" -> LLM_MISTRAL_API_KEY.

        Args:
            raw_key (str): Key without the type and engine prefix.
            default (Any): Value used when the variable is unset; None makes it required.
            val_type (str): "string", "number", "bool" or "list".
        """
        key = self._get_config_key_name(raw_key)
        readers = {
            "string": self._helper_config.get_string_val,
            "number": self._helper_config.get_number_val,
            "bool": self._helper_config.get_bool_val,
            "list": self._helper_config.get_list_val,
        }
        if val_type not in readers:
            raise ValueError(f"Unsupported config value type '{val_type}' for {key}")
        return readers[val_type](key, default=default)

    @abstractmethod
    def _get_auth_header(self) -> dict:
        """Headers carrying the engine credentials; empty for non-HTTP engines."""
        pass

    @abstractmethod
    def _get_base_url(self) -> str:
        """Backend address. HTTP engines prefix every request with it, others only log it."""
        pass

    @abstractmethod
    def _get_endpoint_healthcheck(self) -> str:
        """Path requested by do_healthcheck(), e.g. "/v1/models"."""
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_healthcheck(self) -> httpx.Response:
        return await self.do_request(method="GET", endpoint=self._get_endpoint_healthcheck(), raise_on_error=True)

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Open the shared HTTP client; tests pass an httpx.MockTransport."""
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def do_request(
        self,
        method: str = "GET",
        content: RequestContent | None = None,
        data: RequestData | None = None,
        files: RequestFiles | None = None,
        json: dict | None = None,
        params: QueryParamTypes | None = None,
        endpoint: str = "",
        additional_headers: dict | None = None,
        raise_on_error: bool = False,
    ) -> httpx.Response:
        """Send one request to the backend, relative to its base URL.

        Only one body kind is sent: content, then files (with data as extra
        form fields), then data, then json.

        Raises:
            RuntimeError: If boot() was not called.
            ClientRequestError: On a non-2xx status when raise_on_error is set.
            httpx.TimeoutException: If the backend does not answer within the client timeout.
        """
        if self._client is None:
            raise RuntimeError(f"{self.get_engine_name()} client not booted")

        endpoint = "/" + endpoint.strip().lstrip("/") if endpoint.strip() else ""
        url = f"{self._get_base_url().rstrip('/')}{endpoint}"
        headers = {**self._get_auth_header(), **(additional_headers or {})}

        kwargs: dict = {"headers": headers, "timeout": self.timeout, "params": params}
        if content is not None:
            kwargs["content"] = content
        elif files is not None:
            kwargs["files"] = files
            if data is not None:
                kwargs["data"] = data
        elif data is not None:
            kwargs["data"] = data
        elif json is not None:
            kwargs["json"] = json

        response = await self._client.request(method, url, **kwargs)

        if raise_on_error and response.status_code >= 300:
            self.logging.error("Request to %s failed with status %d: %s", url, response.status_code, response.text[:500])
            raise ClientRequestError(url, response.status_code, response.text)

        return response
