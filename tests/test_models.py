from shared.models.config import WhitelistConfig
from shared.models.work_item import WorkItem


def test_whitelist_matches_emails_and_domains_case_insensitively():
    whitelist = WhitelistConfig(allowed_emails=["Alice@Example.com"], allowed_domains=["@Trusted.org"])
    assert whitelist.is_allowed("alice@example.com")
    assert whitelist.is_allowed("Bob <bob@TRUSTED.org>")
    assert not whitelist.is_allowed("bob@example.com")
    assert not whitelist.is_allowed("not-an-address")


def test_body_prefers_plain_text_then_html():
    assert WorkItem(id="1", body_text="  plain  ", body_html="<p>html</p>").get_body() == "plain"
    item = WorkItem.model_validate({"id": "2", "textAsHtml": "<p>Hello&nbsp;<b>world</b></p>"})
    assert "Hello" in item.get_body() and "world" in item.get_body()
    assert "<" not in item.get_body()
    assert WorkItem(id="3", body_text="   ").get_body() == ""


def test_sender_shapes():
    assert WorkItem.model_validate({"id": "1", "from": "Alice <Alice@Example.com>"}).get_sender() == "alice@example.com"
    assert WorkItem.model_validate({"id": "2", "from": {"address": "bob@x.org"}}).get_sender() == "bob@x.org"
    assert WorkItem.model_validate({"id": "3", "from": {"value": [{"address": "c@y.org"}]}}).get_sender() == "c@y.org"
    assert WorkItem.model_validate({"id": "4", "from": "nobody"}).get_sender() is None
    assert WorkItem.model_validate({"id": "5"}).get_sender() is None


def test_file_payload_keeps_unknown_keys_and_aliases():
    raw = {"id": "1", "from": "a@b.c", "receivedAt": "2025-01-01T00:00:00Z", "body_text": "hi"}
    item = WorkItem.model_validate(raw)
    item.retry_count = 2
    item.next_retry_at = "2025-01-01T00:01:00Z"
    payload = item.to_file_payload()
    assert payload["receivedAt"] == "2025-01-01T00:00:00Z"
    assert payload["from"] == "a@b.c"
    assert payload["retryCount"] == 2
    assert payload["nextRetryAt"] == "2025-01-01T00:01:00Z"
