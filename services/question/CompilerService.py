"""Third question stage: synthesise one answer from all reader extractions."""

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperJson import HelperJson
from shared.models.pipeline import CompilerResult, ModelTier, ReaderResult, Source
from shared.persistence.ConfigStore import ConfigStore

NOTHING_RELEVANT_ANSWER = "No analysed document contains information relevant to this question."

RESPONSE_FORMAT = """{
  "answer": "Detailed, well argued answer based on the documents...",
  "sources": [
    {
      "document_title": "Name of the document",
      "page": 12,
      "quote": "Exact quote from the document"
    }
  ],
  "confidence": 0.85
}"""


def format_extractions(reader_results: list[ReaderResult]) -> str:
    """Group the findings by document, with page/section annotations."""
    blocks: list[str] = []
    for result in reader_results:
        if not result.has_findings:
            continue
        lines = [
            f"## Document: {result.document_title}",
            f"File: {result.filename}",
            f"Confidence: {round(result.confidence * 100)}%",
            f"Summary: {result.summary}",
            "",
        ]
        if result.extractions:
            lines.append("Extractions:")
            for extraction in result.extractions:
                location = ", ".join(part for part in (
                    f"Page {extraction.page}" if extraction.page else None,
                    f"Section: {extraction.section}" if extraction.section else None,
                ) if part)
                prefix = f"[{location}] " if location else ""
                lines.append(f"- {prefix}{extraction.content}")
                if extraction.relevance_to_question:
                    lines.append(f"  → {extraction.relevance_to_question}")
        blocks.append("\n".join(lines))
    return "\n\n---\n\n".join(blocks)


class CompilerService:
    def __init__(self, helper_config: HelperConfig, llm_client: LLMClientInterface, config_store: ConfigStore) -> None:
        self.logging = helper_config.get_logger()
        self._llm_client = llm_client
        self._config_store = config_store

    @staticmethod
    def build_prompt(question: str, reader_results: list[ReaderResult]) -> str:
        return (
            f"User question:\n\"{question}\"\n\n"
            f"Information extracted from the documents:\n\n{format_extractions(reader_results)}\n\n---\n\n"
            "Synthesise this information to answer the user's question.\n"
            "Your answer must be clear and well structured, based only on the extracted "
            "information, and cite its sources precisely.\n\n"
            f"Return your answer in the following JSON format:\n\n{RESPONSE_FORMAT}\n\n"
            "Return ONLY the JSON, without any additional text."
        )

    async def run(self, question: str, reader_results: list[ReaderResult], model_tier: ModelTier) -> CompilerResult:
        """Compile the reader findings into a single answer.

        Without any finding the model is not called and a fixed answer with
        confidence 0 is returned (skipped=True).
        """
        analysed = len(reader_results)
        if not any(r.has_findings for r in reader_results):
            self.logging.info("[COMPILER] No relevant data from readers")
            return CompilerResult(
                success=True,
                answer=NOTHING_RELEVANT_ANSWER,
                confidence=0.0,
                documents_analyzed=analysed,
                skipped=True,
            )

        stage = (await self._config_store.load_llm_config()).get_stage("compiler")
        model = self._llm_client.get_model_for_tier(model_tier)
        messages = self._llm_client.build_messages(stage.system_prompt, self.build_prompt(question, reader_results))

        self.logging.info("[COMPILER] Synthesising %d document(s) with %s...", analysed, model)
        try:
            reply = await self._llm_client.do_chat(model, messages, stage.max_output_tokens or 4000)
        except Exception as e:
            self.logging.error("[COMPILER] Failed: %s", e)
            return CompilerResult(success=False, documents_analyzed=analysed, error=str(e) or e.__class__.__name__)

        parsed = HelperJson.extract_json_object(reply)
        if not parsed.ok or not str(parsed.data.get("answer") or "").strip():
            error = parsed.error if not parsed.ok else "answer missing"
            self.logging.error("[COMPILER] Failed to parse compiler response: %s", error)
            return CompilerResult(success=False, documents_analyzed=analysed, error=f"Failed to parse compiler response: {error}")

        sources: list[Source] = []
        raw_sources = parsed.data.get("sources")
        for entry in raw_sources if isinstance(raw_sources, list) else []:
            if not isinstance(entry, dict):
                continue
            sources.append(Source(
                document_title=str(entry.get("document_title") or ""),
                page=HelperJson.as_optional_int(entry.get("page")) or None,
                quote=str(entry.get("quote") or ""),
            ))

        self.logging.info("[COMPILER] Complete: %d sources cited", len(sources))
        return CompilerResult(
            success=True,
            answer=str(parsed.data["answer"]).strip(),
            sources=sources,
            confidence=HelperJson.as_confidence(parsed.data.get("confidence"), default=0.5),
            documents_analyzed=analysed,
        )

    @staticmethod
    def format_result(result: CompilerResult) -> str:
        """Render the answer, its sources and the confidence footer as plain text."""
        if not result.success:
            lines = ["An error occurred while generating the answer."]
            if result.error:
                lines.append(f"Error: {result.error}")
            return "\n".join(lines)

        lines = [result.answer]
        if result.sources:
            lines.extend(["", "---", "Sources:"])
            for source in result.sources:
                location = f", page {source.page}" if source.page else ""
                lines.append(f"- {source.document_title}{location} : \"{source.quote}\"")
        lines.append("")
        lines.append(f"Confidence: {round(result.confidence * 100)}%")
        lines.append(f"Documents analysed: {result.documents_analyzed}")
        return "\n".join(lines)
