import pytest

from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperHash import HelperHash
from shared.helper.HelperJson import HelperJson


@pytest.mark.parametrize("prefixes", ["", "RE: ", "Re: RE: ", "FW: re : ", "Fwd: FW:Re: RE: "])
def test_subject_hash_ignores_reply_prefixes(prefixes):
    assert HelperHash.subject_hash(prefixes + "Budget 2025") == HelperHash.subject_hash("Budget 2025")


def test_subject_hash_is_case_insensitive_and_16_hex_chars():
    digest = HelperHash.subject_hash("Budget 2025")
    assert digest == HelperHash.subject_hash("BUDGET 2025")
    assert len(digest) == 16
    int(digest, 16)


def test_empty_subject_uses_sentinel():
    assert HelperHash.subject_hash("") == HelperHash.subject_hash(None)
    assert HelperHash.subject_hash("RE: ") == HelperHash.subject_hash("")
    assert HelperHash.subject_hash("") != HelperHash.subject_hash("x")


def test_strip_reply_prefixes_keeps_inner_markers():
    assert HelperHash.strip_reply_prefixes("RE: Fwd: re : Foo: RE: bar") == "Foo: RE: bar"


def test_content_hash_is_sha256_of_bytes():
    assert HelperHash.content_hash(b"abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_extract_json_prefers_code_fence():
    reply = 'Here you go:\n```json\n{"title": "Spec", "page_count": 3}\n```\nAnything else? {"no": 1}'
    result = HelperJson.extract_json_object(reply)
    assert result.ok
    assert result.data == {"title": "Spec", "page_count": 3}


def test_extract_json_from_surrounding_text():
    result = HelperJson.extract_json_object('Sure! {"relevant": false, "extractions": []} Hope it helps.')
    assert result.ok
    assert result.data["relevant"] is False


@pytest.mark.parametrize("reply", [None, "", "   ", "no json at all", "[1, 2, 3]", '{"broken": '])
def test_extract_json_reports_errors_without_raising(reply):
    result = HelperJson.extract_json_object(reply)
    assert not result.ok
    assert result.data is None
    assert result.error


def test_json_coercions():
    assert HelperJson.as_str_list(["a", " ", None, 3]) == ["a", "3"]
    assert HelperJson.as_str_list("a") == []
    assert HelperJson.as_optional_int("12") == 12
    assert HelperJson.as_optional_int(4.0) == 4
    assert HelperJson.as_optional_int(True) is None
    assert HelperJson.as_optional_int("twelve") is None
    assert HelperJson.as_confidence(1.7, default=0.5) == 1.0
    assert HelperJson.as_confidence("high", default=0.5) == 0.5


def test_helper_config_values(helper_config: HelperConfig, monkeypatch, tmp_path):
    monkeypatch.setenv("SOME_NUMBER", "2.5")
    monkeypatch.setenv("SOME_FLAG", "yes")
    monkeypatch.setenv("SOME_LIST", "[a, b]")
    monkeypatch.setenv("ROOT_DIR", str(tmp_path))
    monkeypatch.delenv("MISSING_KEY", raising=False)

    assert helper_config.get_number_val("some_number") == 2.5
    assert helper_config.get_bool_val("SOME_FLAG") is True
    assert helper_config.get_list_val("SOME_LIST") == ["a", "b"]
    assert helper_config.get_path_val("MISSING_KEY", default="storage") == tmp_path / "storage"
    with pytest.raises(ValueError):
        helper_config.get_string_val("MISSING_KEY")
