"""First question stage: choose the catalog documents worth reading."""

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperJson import HelperJson
from shared.models.document import DocumentSummary
from shared.models.pipeline import ModelTier, PreselectionResult, SelectedDocument
from shared.persistence.ConfigStore import ConfigStore
from shared.persistence.DocumentStore import DocumentStore

RESPONSE_FORMAT = """{
  "selected_documents": [
    {
      "document_id": "id-of-the-document",
      "reason": "Short explanation of why this document is relevant"
    }
  ],
  "no_relevant_docs": false
}"""

NO_RELEVANT_FORMAT = """{
  "selected_documents": [],
  "no_relevant_docs": true
}"""


def format_catalog(documents: list[DocumentSummary]) -> str:
    """Render catalog entries for the prompt, separated by ``---``."""
    blocks: list[str] = []
    for document in documents:
        lines = [f"ID: {document.id}", f"File: {document.filename}"]
        if document.title:
            lines.append(f"Title: {document.title}")
        if document.document_type:
            lines.append(f"Type: {document.document_type}")
        if document.subjects:
            lines.append(f"Subjects: {', '.join(document.subjects)}")
        if document.keywords:
            lines.append(f"Keywords: {', '.join(document.keywords)}")
        if document.summary:
            lines.append(f"Summary: {document.summary}")
        blocks.append("\n".join(lines))
    return "\n\n---\n\n".join(blocks)


class PreselectionService:
    def __init__(
        self,
        helper_config: HelperConfig,
        llm_client: LLMClientInterface,
        document_store: DocumentStore,
        config_store: ConfigStore,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._llm_client = llm_client
        self._document_store = document_store
        self._config_store = config_store

    @staticmethod
    def build_prompt(question: str, documents: list[DocumentSummary]) -> str:
        return (
            f"User question:\n\"{question}\"\n\n"
            f"Documents available in the catalog:\n\n{format_catalog(documents)}\n\n---\n\n"
            "Analyse the question and decide which documents are relevant to answer it.\n"
            f"Return your answer in the following JSON format:\n\n{RESPONSE_FORMAT}\n\n"
            f"If no document is relevant, return:\n{NO_RELEVANT_FORMAT}\n\n"
            "Return ONLY the JSON, without any additional text."
        )

    async def run(self, question: str, model_tier: ModelTier) -> PreselectionResult:
        """Ask the model which catalog documents can answer the question.

        Ids that are not in the catalog are dropped. An empty catalog returns
        without a model call.

        Args:
            question (str): The user question.
            model_tier (ModelTier): Tier selected by the subject tags.

        Returns:
            PreselectionResult: success=False only when the model call or its parsing failed.
        """
        documents = await self._document_store.get_all_summaries()
        if not documents:
            self.logging.info("[PRESELECTION] No documents in catalog")
            return PreselectionResult(success=True, no_relevant_docs=True, catalog_size=0)

        self.logging.info("[PRESELECTION] Analysing %d documents for question relevance...", len(documents))
        stage = (await self._config_store.load_llm_config()).get_stage("preselection")
        model = self._llm_client.get_model_for_tier(model_tier)
        messages = self._llm_client.build_messages(stage.system_prompt, self.build_prompt(question, documents))

        try:
            reply = await self._llm_client.do_chat(model, messages, stage.max_output_tokens or 2000)
        except Exception as e:
            self.logging.error("[PRESELECTION] Model call failed: %s", e)
            return PreselectionResult(success=False, catalog_size=len(documents), error=str(e) or e.__class__.__name__)

        parsed = HelperJson.extract_json_object(reply)
        if not parsed.ok:
            self.logging.error("[PRESELECTION] Unusable reply: %s", parsed.error)
            return PreselectionResult(success=False, catalog_size=len(documents), error=f"Failed to parse preselection response: {parsed.error}")

        known_ids = {d.id for d in documents}
        selected: list[SelectedDocument] = []
        raw_selection = parsed.data.get("selected_documents")
        for entry in raw_selection if isinstance(raw_selection, list) else []:
            if not isinstance(entry, dict):
                continue
            document_id = str(entry.get("document_id") or "").strip()
            if document_id not in known_ids:
                if document_id:
                    self.logging.debug("[PRESELECTION] Ignoring unknown document id %s", document_id)
                continue
            if any(s.document_id == document_id for s in selected):
                continue
            selected.append(SelectedDocument(document_id=document_id, reason=str(entry.get("reason") or "")))

        no_relevant = parsed.data.get("no_relevant_docs") is True or not selected
        self.logging.info("[PRESELECTION] Selected %d document(s) out of %d", len(selected), len(documents))
        return PreselectionResult(
            success=True,
            selected_documents=[] if no_relevant else selected,
            no_relevant_docs=no_relevant,
            catalog_size=len(documents),
        )
