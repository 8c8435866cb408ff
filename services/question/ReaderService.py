"""Second question stage: extract evidence from each document, in bounded batches."""

import asyncio
from typing import Awaitable, Callable

from pydantic import BaseModel

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperJson import HelperJson
from shared.models.config import StageConfig
from shared.models.pipeline import Extraction, ModelTier, ReaderResult
from shared.persistence.ConfigStore import ConfigStore

MAX_CONCURRENT_READERS = 5
API_DELAY_SECONDS = 1.0
READER_TIMEOUT_SECONDS = 60.0

RESPONSE_FORMAT = """{
  "relevant": true,
  "confidence": 0.85,
  "extractions": [
    {
      "content": "Exact text extracted from the document",
      "page": 12,
      "section": "3.2 Architecture",
      "relevance_to_question": "This answers the question because..."
    }
  ],
  "summary": "What this document contributes to the question"
}"""

NOT_RELEVANT_FORMAT = """{
  "relevant": false,
  "confidence": 0.9,
  "extractions": [],
  "summary": "This document contains no information relevant to the question"
}"""


class ReaderParseError(Exception):
    pass


class ReadTarget(BaseModel):
    """A document to read: catalog metadata plus a way to obtain its fetchable URL."""

    document_id: str
    title: str
    filename: str
    document_type: str | None = None
    summary: str | None = None
    resolve_reference: Callable[[], Awaitable[str]]


class ReaderService:
    def __init__(
        self,
        helper_config: HelperConfig,
        llm_client: LLMClientInterface,
        config_store: ConfigStore,
        max_concurrent: int | None = None,
        delay: float | None = None,
        timeout: float | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._llm_client = llm_client
        self._config_store = config_store
        self.max_concurrent = max(1, int(max_concurrent if max_concurrent is not None else helper_config.get_number_val("READER_MAX_CONCURRENT", default=MAX_CONCURRENT_READERS)))
        self.delay = delay if delay is not None else helper_config.get_number_val("PROVIDER_DELAY_SECONDS", default=API_DELAY_SECONDS)
        self.timeout = timeout if timeout is not None else helper_config.get_number_val("READER_TIMEOUT_SECONDS", default=READER_TIMEOUT_SECONDS)

    @staticmethod
    def build_prompt(question: str, target: ReadTarget) -> str:
        return (
            f"User question:\n\"{question}\"\n\n"
            "Document to analyse:\n"
            f"- Title: {target.title}\n"
            f"- Type: {target.document_type or 'Not specified'}\n"
            f"- Summary: {target.summary or 'Not available'}\n\n"
            "Analyse this document and extract all information relevant to answer the question.\n\n"
            f"Return your answer in the following JSON format:\n\n{RESPONSE_FORMAT}\n\n"
            f"If the document contains no relevant information:\n{NOT_RELEVANT_FORMAT}\n\n"
            "Return ONLY the JSON, without any additional text."
        )

    @staticmethod
    def parse_reply(reply: str) -> dict:
        """Decode a reader reply into relevant/confidence/extractions/summary.

        Raises:
            ReaderParseError: If the reply holds no JSON object.
        """
        parsed = HelperJson.extract_json_object(reply)
        if not parsed.ok:
            raise ReaderParseError(f"Failed to parse reader response: {parsed.error}")
        data = parsed.data
        extractions: list[Extraction] = []
        raw_extractions = data.get("extractions")
        for entry in raw_extractions if isinstance(raw_extractions, list) else []:
            if not isinstance(entry, dict):
                continue
            extractions.append(Extraction(
                content=str(entry.get("content") or ""),
                page=HelperJson.as_optional_int(entry.get("page")) or None,
                section=str(entry["section"]) if entry.get("section") else None,
                relevance_to_question=str(entry.get("relevance_to_question") or ""),
            ))
        return {
            "relevant": data.get("relevant") is True,
            "confidence": HelperJson.as_confidence(data.get("confidence"), default=0.5),
            "extractions": extractions,
            "summary": str(data.get("summary") or ""),
        }

    async def _read_document(self, target: ReadTarget, question: str, model: str, stage: StageConfig) -> ReaderResult:
        self.logging.info("[READER] Analysing: %s", target.filename)
        document_url = await target.resolve_reference()
        messages = self._llm_client.build_messages(stage.system_prompt, self.build_prompt(question, target), document_url=document_url)
        reply = await self._llm_client.do_chat(model, messages, stage.max_output_tokens or 4000)
        parsed = self.parse_reply(reply)
        self.logging.info("[READER] Completed: %s (%d extractions)", target.filename, len(parsed["extractions"]))
        return ReaderResult(
            document_id=target.document_id,
            document_title=target.title,
            filename=target.filename,
            **parsed,
        )

    async def _read_with_guard(self, target: ReadTarget, question: str, model: str, stage: StageConfig, start_delay: float) -> ReaderResult:
        """Run one reader after its stagger delay; any failure becomes relevant=False, confidence=0."""
        if start_delay > 0:
            await asyncio.sleep(start_delay)
        try:
            return await asyncio.wait_for(self._read_document(target, question, model, stage), timeout=self.timeout)
        except asyncio.TimeoutError:
            error = f"Reader timeout after {self.timeout:g}s"
        except Exception as e:
            error = str(e) or e.__class__.__name__
        self.logging.error("[READER] Failed: %s - %s", target.filename, error)
        return ReaderResult(
            document_id=target.document_id,
            document_title=target.title,
            filename=target.filename,
            relevant=False,
            confidence=0.0,
            error=error,
        )

    async def run(self, targets: list[ReadTarget], question: str, model_tier: ModelTier) -> list[ReaderResult]:
        """Read all targets and return one result per target, in input order.

        Targets run in batches of max_concurrent. Inside a batch the n-th reader
        starts n * delay seconds after the first; consecutive batches are separated
        by delay.
        """
        if not targets:
            self.logging.info("[READER] No documents to analyse")
            return []

        stage = (await self._config_store.load_llm_config()).get_stage("reader")
        model = self._llm_client.get_model_for_tier(model_tier)
        self.logging.info("[READER] Analysing %d document(s) with %s...", len(targets), model)

        results: list[ReaderResult] = []
        for start in range(0, len(targets), self.max_concurrent):
            if start > 0 and self.delay > 0:
                await asyncio.sleep(self.delay)
            batch = targets[start:start + self.max_concurrent]
            results.extend(await asyncio.gather(*[
                self._read_with_guard(target, question, model, stage, index * self.delay)
                for index, target in enumerate(batch)
            ]))

        relevant = sum(1 for r in results if r.has_findings)
        self.logging.info("[READER] Found %d relevant document(s) out of %d", relevant, len(results))
        return results
