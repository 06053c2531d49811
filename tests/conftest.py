import pytest

import settings as settings_module
from settings import Settings

CONFIG_NAMES = (
    "LLM_PROVIDER", "OPENAI_API_KEY", "GOOGLE_API_KEY", "OPENAI_BASE_URL", "LLM_MODEL",
    "LLM_TIMEOUT", "AI_ACCESS_PASSWORD", "MAX_POINTS", "QUESTION_ROW_LIMIT",
    "EXCLUDED_KEYS", "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    for name in CONFIG_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(settings_module, "_secret", lambda name: None)


@pytest.fixture
def settings():
    return Settings(openai_api_key="sk-test", access_password="open-sesame")


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            import requests
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


def completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.fixture
def fake_post(monkeypatch):
    """Replace requests.post in llm_client and record every call."""
    import llm_client

    calls = []
    state = {"response": FakeResponse(completion("A clear upward trend."))}

    def _post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        return state["response"]

    monkeypatch.setattr(llm_client.requests, "post", _post)
    _post.calls = calls
    _post.respond_with = lambda resp: state.__setitem__("response", resp)
    return _post


@pytest.fixture
def reply():
    """Build a chat-completion response object for ``fake_post.respond_with``."""
    def _reply(content=None, payload=None, status_code=200):
        return FakeResponse(completion(content) if payload is None else payload, status_code)
    return _reply
