"""Reads the subject tags of a request: flow type and model tier."""

import re

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.pipeline import FlowDetection, FlowType, ModelTier

IMPORT_TAG = "(add)"
MAX_TAGS = ("(max)", "(high)")
PRO_TAGS = ("(pro)", "(medium)")

_TAG_RE = re.compile(r"\((?:add|max|high|pro|medium)\)", re.IGNORECASE)


class FlowRouter:
    def __init__(self, helper_config: HelperConfig, llm_client: LLMClientInterface):
        self.logging = helper_config.get_logger()
        self._llm_client = llm_client

    @staticmethod
    def detect_flow_type(subject: str | None) -> FlowType:
        return FlowType.IMPORT if IMPORT_TAG in (subject or "").lower() else FlowType.QUESTION

    @staticmethod
    def extract_model_tier(subject: str | None) -> ModelTier:
        """Top tier wins when both a top and a mid tier tag are present."""
        lowered = (subject or "").lower()
        if any(tag in lowered for tag in MAX_TAGS):
            return ModelTier.MAX
        if any(tag in lowered for tag in PRO_TAGS):
            return ModelTier.PRO
        return ModelTier.STANDARD

    def get_model_name(self, tier: ModelTier) -> str:
        return self._llm_client.get_model_for_tier(tier)

    @staticmethod
    def clean_subject(subject: str | None) -> str:
        """Subject without flow and tier tags, whitespace collapsed."""
        return " ".join(_TAG_RE.sub(" ", subject or "").split())

    def detect_flow(self, subject: str | None) -> FlowDetection:
        detection = FlowDetection(
            flow_type=self.detect_flow_type(subject),
            model_tier=self.extract_model_tier(subject),
            model_name="",
            clean_subject=self.clean_subject(subject),
        )
        detection.model_name = self.get_model_name(detection.model_tier)
        self.logging.info("[FLOW] Type: %s, Model: %s", detection.flow_type.value.upper(), detection.model_name)
        return detection
