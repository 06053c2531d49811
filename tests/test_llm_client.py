import dataclasses
import json
import types

import pytest
import requests

import llm_client
from llm_client import (
    NO_ANSWER,
    NO_SUMMARY,
    REVIEW_FALLBACK,
    LLMError,
    MissingAPIKeyError,
    ask_question,
    fetch_summary,
    is_access_granted,
    parse_review,
    records_to_json,
    review_data,
)

RECORDS = [{"Age": 25.0, "City": "LA"}, {"Age": 30.0, "City": "NY"}]


def test_records_to_json_writes_whole_numbers_as_ints():
    out = records_to_json([{"a": 30.0, "b": 1.5, "c": float("nan"), "d": "x"}])
    assert out == '[{"a": 30, "b": 1.5, "c": null, "d": "x"}]'


def test_summary_request_shape(fake_post, settings):
    text = fetch_summary(RECORDS, "Screen_Time", "Sleep_Hours", settings)
    assert text == "A clear upward trend."

    call = fake_post.calls[0]
    assert call["url"] == "https://api.openai.com/v1/chat/completions"
    assert call["headers"]["Authorization"] == "Bearer sk-test"
    assert call["timeout"] is None
    body = call["json"]
    assert body["model"] == "gpt-4o-mini"
    assert [m["role"] for m in body["messages"]] == ["system", "user"]
    user = body["messages"][1]["content"]
    assert "between Screen Time and Sleep Hours" in user
    assert '"Age": 25,' in user


def test_summary_default_when_model_is_silent(fake_post, reply, settings):
    fake_post.respond_with(reply(""))
    assert fetch_summary(RECORDS, "Age", "City", settings) == NO_SUMMARY
    fake_post.respond_with(reply(payload={"choices": []}))
    assert fetch_summary(RECORDS, "Age", "City", settings) == NO_SUMMARY


def test_question_sends_first_rows_only(fake_post, reply, settings):
    fake_post.respond_with(reply("Mostly young users."))
    rows = [{"n": float(i)} for i in range(80)]
    assert ask_question("Who uses it?", rows, settings) == "Mostly young users."

    user = fake_post.calls[0]["json"]["messages"][1]["content"]
    dataset = user.split("Dataset: ", 1)[1].split("\n\nQuestion:", 1)[0]
    assert len(json.loads(dataset)) == 50
    assert user.endswith("Question: Who uses it?")


def test_question_default_when_model_is_silent(fake_post, reply, settings):
    fake_post.respond_with(reply(None))
    assert ask_question("?", RECORDS, settings) == NO_ANSWER


def test_missing_key_fails_before_any_request(fake_post):
    with pytest.raises(MissingAPIKeyError):
        fetch_summary(RECORDS, "Age", "City", llm_client.Settings())
    assert fake_post.calls == []


def test_http_error_becomes_llm_error(fake_post, reply, settings):
    fake_post.respond_with(reply(payload={"error": "bad key"}, status_code=401))
    with pytest.raises(LLMError):
        fetch_summary(RECORDS, "Age", "City", settings)


def test_non_json_body_becomes_llm_error(fake_post, reply, settings):
    fake_post.respond_with(reply(payload=ValueError("not json")))
    with pytest.raises(LLMError):
        ask_question("?", RECORDS, settings)


def test_connection_error_becomes_llm_error(monkeypatch, settings):
    def _boom(*args, **kwargs):
        raise requests.ConnectionError("offline")
    monkeypatch.setattr(llm_client.requests, "post", _boom)
    with pytest.raises(LLMError):
        ask_question("?", RECORDS, settings)


def test_custom_base_url_and_timeout(fake_post, settings):
    custom = dataclasses.replace(settings, openai_base_url="http://localhost:8080/v1", llm_timeout=5.0)
    ask_question("?", RECORDS, custom)
    assert fake_post.calls[0]["url"] == "http://localhost:8080/v1/chat/completions"
    assert fake_post.calls[0]["timeout"] == 5.0


def test_gemini_provider(monkeypatch):
    seen = {}

    class FakeModel:
        def __init__(self, name, system_instruction=None):
            seen["name"] = name
            seen["system"] = system_instruction

        def generate_content(self, prompt):
            seen["prompt"] = prompt
            return types.SimpleNamespace(text="Gemini says hi.")

    fake_genai = types.SimpleNamespace(
        configure=lambda api_key: seen.setdefault("key", api_key),
        GenerativeModel=FakeModel,
    )
    monkeypatch.setattr(llm_client, "genai", fake_genai)
    gemini = llm_client.Settings(llm_provider="gemini", google_api_key="g-key", llm_model="gemini-1.5-flash")

    assert ask_question("Hi?", RECORDS, gemini) == "Gemini says hi."
    assert seen["key"] == "g-key"
    assert seen["name"] == "gemini-1.5-flash"
    assert "concise" in seen["system"]
    assert "Question: Hi?" in seen["prompt"]


def test_gemini_failure_becomes_llm_error(monkeypatch):
    class FailingModel:
        def __init__(self, *args, **kwargs):
            pass

        def generate_content(self, prompt):
            raise RuntimeError("quota exceeded")

    monkeypatch.setattr(llm_client, "genai",
                        types.SimpleNamespace(configure=lambda api_key: None, GenerativeModel=FailingModel))
    gemini = llm_client.Settings(llm_provider="gemini", google_api_key="g-key")
    with pytest.raises(LLMError):
        ask_question("?", RECORDS, gemini)


# ----- review parsing -----
def test_parse_review_plain_json():
    review = parse_review('{"issues": ["Age has blanks"], "advice": "Fill or drop blank ages."}')
    assert review == {"issues": ["Age has blanks"], "advice": "Fill or drop blank ages."}


def test_parse_review_strips_code_fences():
    text = '```json\n{"issues": [], "advice": "Looks clean."}\n```'
    assert parse_review(text) == {"issues": [], "advice": "Looks clean."}


@pytest.mark.parametrize("text", ["Sorry, I cannot help.", '["a", "b"]', '{"issues": "one", "advice": "x"}', ""])
def test_parse_review_falls_back(text):
    assert parse_review(text) == REVIEW_FALLBACK


def test_review_data_round_trip(fake_post, reply, settings):
    fake_post.respond_with(reply('```\n{"issues": ["City is free text"], "advice": "Normalize city names."}\n```'))
    assert review_data(RECORDS, settings)["issues"] == ["City is free text"]
    assert "JSON" in fake_post.calls[0]["json"]["messages"][0]["content"]


# ----- access gate -----
def test_access_gate(settings):
    assert is_access_granted("open-sesame", settings)
    assert not is_access_granted("open", settings)
    assert not is_access_granted("", llm_client.Settings())
