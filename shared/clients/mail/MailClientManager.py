from shared.helper.HelperConfig import HelperConfig
from shared.clients.mail.MailClientInterface import MailClientInterface


class MailClientManager:
    """Manager class to instantiate the configured outbound mail client."""

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        engine = self.helper_config.get_string_val("MAIL_ENGINE", default="smtp")
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> MailClientInterface:
        """Instantiate the mail client for the configured engine.

        Raises:
            ValueError: If the engine is unsupported or its configuration is incomplete.
        """
        engine = self._get_engine_from_env()
        class_name = f"MailClient{engine}"
        try:
            module = __import__(
                f"shared.clients.mail.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError("Unsupported mail engine '%s'. Error: %s" % (engine, e))
        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated mail client for engine: %s", engine)
        return client

    def get_client(self) -> MailClientInterface:
        return self.client
