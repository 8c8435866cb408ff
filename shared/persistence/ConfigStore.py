"""File configuration that is re-read on every poll cycle.

``whitelist.json`` is mandatory: a missing or invalid file raises.
``llm.json`` is optional: problems are logged and the built-in prompts apply.
"""

import json
from pathlib import Path

from pydantic import ValidationError

from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperFile import HelperFile
from shared.models.config import LLMConfig, StageConfig, WhitelistConfig

_BASE_PROMPT = (
    "You are an assistant specialised in analysing PDF documents and answering "
    "questions about them. Answer in clear, well structured plain text."
)

DEFAULT_LLM_CONFIG = LLMConfig(
    indexation=StageConfig(
        system_prompt=_BASE_PROMPT + " You catalogue documents with precise, factual metadata.",
        max_output_tokens=2000,
    ),
    preselection=StageConfig(
        system_prompt=_BASE_PROMPT + " You decide which catalogued documents can answer a question.",
        max_output_tokens=2000,
    ),
    reader=StageConfig(
        system_prompt=_BASE_PROMPT + " You extract verbatim passages relevant to a question.",
        max_output_tokens=4000,
    ),
    compiler=StageConfig(
        system_prompt=_BASE_PROMPT + " You synthesise an answer strictly from the supplied extracts.",
        max_output_tokens=4000,
    ),
)


class WhitelistError(Exception):
    """The sender whitelist is missing or malformed."""


class ConfigStore:
    def __init__(self, helper_config: HelperConfig, config_dir: Path | None = None):
        self.logging = helper_config.get_logger()
        self.config_dir = config_dir or helper_config.get_path_val("CONFIG_DIR", default="./config")
        self.whitelist_path = self.config_dir / "whitelist.json"
        self.llm_config_path = self.config_dir / "llm.json"

    async def load_whitelist(self) -> WhitelistConfig:
        """Read the sender whitelist.

        Raises:
            WhitelistError: If the file is missing, not JSON, or lacks one of the two lists.
        """
        try:
            raw = await HelperFile.read_json(self.whitelist_path)
        except FileNotFoundError:
            raise WhitelistError(f"Whitelist not found at {self.whitelist_path}")
        except (OSError, json.JSONDecodeError) as e:
            raise WhitelistError(f"Whitelist at {self.whitelist_path} is unreadable: {e}")
        try:
            whitelist = WhitelistConfig.model_validate(raw)
        except ValidationError as e:
            raise WhitelistError(
                f"Whitelist must contain 'allowed_emails' and 'allowed_domains' arrays: {e.error_count()} error(s)"
            )
        self.logging.debug(
            "[CONFIG] Whitelist reloaded: %d email(s), %d domain(s)",
            len(whitelist.allowed_emails), len(whitelist.allowed_domains),
        )
        return whitelist

    async def load_llm_config(self) -> LLMConfig:
        """Read the stage prompts, falling back to the defaults per stage."""
        try:
            raw = await HelperFile.read_json(self.llm_config_path)
        except FileNotFoundError:
            self.logging.warning("[CONFIG] %s not found, using default prompts", self.llm_config_path.name)
            return DEFAULT_LLM_CONFIG
        except (OSError, json.JSONDecodeError) as e:
            self.logging.error("[CONFIG] Invalid %s, using default prompts: %s", self.llm_config_path.name, e)
            return DEFAULT_LLM_CONFIG

        if not isinstance(raw, dict):
            self.logging.error("[CONFIG] %s must contain an object, using default prompts", self.llm_config_path.name)
            return DEFAULT_LLM_CONFIG

        merged = DEFAULT_LLM_CONFIG.model_dump()
        for stage, values in raw.items():
            if stage not in merged or not isinstance(values, dict):
                self.logging.warning("[CONFIG] Ignoring unknown stage '%s' in %s", stage, self.llm_config_path.name)
                continue
            merged[stage].update({k: v for k, v in values.items() if v not in (None, "")})
        try:
            return LLMConfig.model_validate(merged)
        except ValidationError as e:
            self.logging.error("[CONFIG] Invalid values in %s, using default prompts: %s", self.llm_config_path.name, e)
            return DEFAULT_LLM_CONFIG
