from pydantic import BaseModel, field_validator


class EnvConfig(BaseModel):
    """
    Represents a single configuration parameter required for a env setting.

    Attributes:
        env_key (str): The key/name of the environment variable to read.
        val_type (str): The expected type of the environment variable's value. Supported types are "string", "number", "bool", and "list".
        default (str | int | float | bool | list | None): An optional default value if the environment variable is not set. If None, the variable is required and an error will be raised if it is not set.
    """

    env_key: str
    val_type: str
    default: str | int | float | bool | list | None = None


class StageConfig(BaseModel):
    """Prompt settings of one model stage (indexation, preselection, reader, compiler)."""

    system_prompt: str = ""
    max_output_tokens: int = 4000


class LLMConfig(BaseModel):
    """Content of ``llm.json``. Missing stages fall back to the built-in defaults."""

    indexation: StageConfig = StageConfig(max_output_tokens=2000)
    preselection: StageConfig = StageConfig(max_output_tokens=2000)
    reader: StageConfig = StageConfig()
    compiler: StageConfig = StageConfig()

    def get_stage(self, stage: str) -> StageConfig:
        stage_config = getattr(self, stage, None)
        if not isinstance(stage_config, StageConfig):
            raise ValueError(f"Unknown model stage '{stage}'.")
        return stage_config


class WhitelistConfig(BaseModel):
    """Content of ``whitelist.json``. Both lists are required; entries are compared case-insensitively."""

    allowed_emails: list[str]
    allowed_domains: list[str]

    @field_validator("allowed_emails", "allowed_domains")
    @classmethod
    def _normalise(cls, values: list[str]) -> list[str]:
        return [v.strip().lower().lstrip("@") for v in values if isinstance(v, str) and v.strip()]

    def is_allowed(self, sender: str) -> bool:
        """Check a sender address against the allowed emails and domains.

        Args:
            sender (str): Plain address or "Name <address>" form.

        Returns:
            bool: True if the address or its domain is whitelisted.
        """
        address = sender.strip().lower()
        if "<" in address and address.endswith(">"):
            address = address[address.rfind("<") + 1:-1].strip()
        if "@" not in address:
            return False
        if address in self.allowed_emails:
            return True
        domain = address.rsplit("@", 1)[1]
        return domain in self.allowed_domains
