import base64
from unittest.mock import AsyncMock

import pytest

from services.routing.FlowRouter import FlowRouter
from services.routing.RequestService import RequestService, decode_base64
from shared.models.pipeline import (
    FailureKind,
    FlowType,
    ImportedDocument,
    ImportResult,
    ImportStats,
    ModelTier,
    QuestionResult,
)
from shared.models.work_item import WorkItem


def _b64(content: bytes) -> str:
    return base64.b64encode(content).decode("ascii")


def _item(subject: str, attachments: list[dict] | None = None, body: str = "What is the retention?") -> WorkItem:
    return WorkItem.model_validate({
        "id": "msg-1",
        "from": "Alice <alice@example.com>",
        "subject": subject,
        "body_text": body,
        "attachments": attachments or [],
    })


@pytest.fixture()
def services():
    import_service = AsyncMock()
    question_service = AsyncMock()
    question_service.process_question.return_value = QuestionResult(success=True, response="Seven days.", documents_analyzed=1)
    return import_service, question_service


@pytest.fixture()
def request_service(helper_config, fake_llm, thread_store, services) -> RequestService:
    import_service, question_service = services
    return RequestService(helper_config, FlowRouter(helper_config, fake_llm), import_service, question_service, thread_store)


############### FLOW ROUTER ###############

@pytest.mark.parametrize("subject, flow, tier", [
    ("Quarterly report", FlowType.QUESTION, ModelTier.STANDARD),
    ("(ADD) new specs", FlowType.IMPORT, ModelTier.STANDARD),
    ("(add)(pro) specs", FlowType.IMPORT, ModelTier.PRO),
    ("question (medium)", FlowType.QUESTION, ModelTier.PRO),
    ("(pro) question (HIGH)", FlowType.QUESTION, ModelTier.MAX),
    ("(max)", FlowType.QUESTION, ModelTier.MAX),
])
def test_flow_detection(helper_config, fake_llm, subject, flow, tier):
    detection = FlowRouter(helper_config, fake_llm).detect_flow(subject)
    assert detection.flow_type == flow
    assert detection.model_tier == tier
    assert detection.model_name == f"model-{tier.value}"


def test_clean_subject():
    assert FlowRouter.clean_subject("(add)  (PRO) Quarterly   report ") == "Quarterly report"
    assert FlowRouter.clean_subject(None) == ""


############### DECODING ###############

def test_decode_base64_validation():
    assert decode_base64(_b64(b"%PDF-1.7 content")) == b"%PDF-1.7 content"
    assert decode_base64(" ".join(_b64(b"%PDF-1.7 content"))) == b"%PDF-1.7 content"
    assert decode_base64(None) is None
    assert decode_base64("abc") is None
    assert decode_base64("!!!!****") is None


############### ROUTING ###############

@pytest.mark.asyncio()
async def test_import_success_builds_confirmation(request_service, services):
    import_service, _ = services
    import_service.process_import.return_value = ImportResult(
        success=True,
        documents=[ImportedDocument(filename="a.pdf", title="Spec")],
        stats=ImportStats(total=1, imported=1),
    )
    item = _item("(add) specs", [{"filename": "a.pdf", "contentType": "application/pdf", "content_base64": _b64(b"%PDF-1.7 abc")}])

    outcome = await request_service.process_request(item)

    assert outcome.success
    assert outcome.flow_type == FlowType.IMPORT
    assert outcome.reply_subject == "Re: (add) specs"
    assert "Document imported" in outcome.reply_body
    attachments, body, tier = import_service.process_import.call_args.args
    assert attachments[0].content == b"%PDF-1.7 abc"
    assert body == "What is the retention?"
    assert tier == ModelTier.STANDARD


@pytest.mark.asyncio()
async def test_import_rejection_is_a_validation_failure(request_service, services):
    import_service, _ = services
    import_service.process_import.return_value = ImportResult(success=False, error="No PDF files found to import", rejection_reason="no_attachments")

    outcome = await request_service.process_request(_item("(add)"))

    assert not outcome.success
    assert outcome.failure_kind == FailureKind.VALIDATION
    assert outcome.failure_reason == "no_attachments"


@pytest.mark.asyncio()
async def test_import_errors_are_transient(request_service, services):
    import_service, _ = services
    import_service.process_import.return_value = ImportResult(success=False, stats=ImportStats(total=1, errors=1))

    outcome = await request_service.process_request(_item("(add)"))

    assert outcome.failure_kind == FailureKind.TRANSIENT


@pytest.mark.asyncio()
async def test_reply_without_attachments_reuses_thread_pdfs(request_service, services):
    _, question_service = services
    pdf = {"filename": "contract.pdf", "contentType": "application/pdf", "content_base64": _b64(b"%PDF-1.7 contract")}

    first = await request_service.process_request(_item("Contract terms", [pdf]))
    second = await request_service.process_request(_item("RE: Contract terms"))

    assert first.success and second.success
    assert second.reply_subject == "Re: RE: Contract terms"
    recovered = question_service.process_question.call_args_list[1].kwargs["attachments"]
    assert [p.filename for p in recovered] == ["contract.pdf"]
    assert recovered[0].content == b"%PDF-1.7 contract"


@pytest.mark.asyncio()
async def test_question_ignores_non_pdf_attachments(request_service, services):
    _, question_service = services
    image = {"filename": "photo.png", "contentType": "image/png", "content_base64": _b64(b"\x89PNG....")}

    await request_service.process_request(_item("Photo question", [image]))

    assert question_service.process_question.call_args.kwargs["attachments"] == []


@pytest.mark.asyncio()
async def test_too_many_question_pdfs_is_a_validation_failure(request_service, services):
    _, question_service = services
    pdfs = [
        {"filename": f"p{i}.pdf", "contentType": "application/pdf", "content_base64": _b64(b"%PDF-1.7 " + bytes([i]) * 8)}
        for i in range(11)
    ]

    outcome = await request_service.process_request(_item("Many", pdfs))

    assert outcome.failure_kind == FailureKind.VALIDATION
    assert outcome.failure_reason == "invalid_attachments"
    question_service.process_question.assert_not_called()


@pytest.mark.asyncio()
async def test_question_failure_is_transient(request_service, services):
    _, question_service = services
    question_service.process_question.return_value = QuestionResult(success=False, response="error", error="provider down")

    outcome = await request_service.process_request(_item("Anything"))

    assert not outcome.success
    assert outcome.failure_kind == FailureKind.TRANSIENT
    assert outcome.error == "provider down"
