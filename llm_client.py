"""
Chat-completion requests about the loaded dataset.

Two providers are supported: any OpenAI-compatible chat completions
endpoint (plain HTTPS via ``requests``) and Gemini through
``google-generativeai``.  Calls are single request/response round trips:
no retries, no streaming, and no timeout unless ``LLM_TIMEOUT`` is set.
"""

import json
import logging
from typing import Dict, List, Optional, Sequence

import google.generativeai as genai
import requests

from data_pipeline import TypedRecord, humanize_key, to_jsonable
from settings import Settings, load_settings

logger = logging.getLogger(__name__)

NO_SUMMARY = "No summary generated."
NO_ANSWER = "No answer generated."
DEFAULT_QUESTION = "Describe trends."
REVIEW_FALLBACK = {
    "issues": ["Could not parse the AI response."],
    "advice": "Please try again.",
}

# ================== PROMPTS ==================
SUMMARY_SYSTEM_PROMPT = (
    "You are a concise data analyst. Analyze the provided JSON records from an "
    "uploaded CSV file. Summarize the most essential parts of the analysis in one sentence."
)
QUESTION_SYSTEM_PROMPT = (
    "You are a helpful data analyst. Answer questions about the provided dataset "
    "in maximum 2 phrases. Be extremely concise and direct."
)
ANALYZE_SYSTEM_PROMPT = "You are a data analyst."
REVIEW_SYSTEM_PROMPT = """
You are a data quality reviewer. Look at the provided JSON records and reply with
ONLY a JSON object (no prose) of the form:
{"issues": ["<short description of one problem>", ...], "advice": "<one sentence>"}
Use an empty list when you find no issues.
""".strip()


class LLMError(RuntimeError):
    """A chat completion could not be obtained or understood."""


class MissingAPIKeyError(LLMError):
    pass


def records_to_json(records: Sequence[TypedRecord], indent: Optional[int] = None) -> str:
    rows = [{k: to_jsonable(v) for k, v in row.items()} for row in records]
    return json.dumps(rows, indent=indent, ensure_ascii=False)


def is_access_granted(password: str, settings: Optional[Settings] = None) -> bool:
    """Plain equality against AI_ACCESS_PASSWORD; no configured password means no access."""
    settings = settings or load_settings()
    expected = settings.access_password
    return bool(expected) and password == expected


def _remove_md_fences(text: str) -> str:
    if not isinstance(text, str):
        return ""
    if text.strip().startswith("```"):
        lines = [ln for ln in text.splitlines() if not ln.strip().startswith("```")]
        return "\n".join(lines).strip()
    return text.strip()


# ================== PROVIDERS ==================
def _openai_chat(messages: List[Dict[str, str]], settings: Settings) -> str:
    url = f"{settings.openai_base_url}/chat/completions"
    try:
        resp = requests.post(
            url,
            json={"model": settings.llm_model, "messages": messages},
            headers={
                "Authorization": f"Bearer {settings.openai_api_key}",
                "Content-Type": "application/json",
            },
            timeout=settings.llm_timeout,
        )
        resp.raise_for_status()
        payload = resp.json()
    except (requests.RequestException, ValueError) as exc:
        raise LLMError(f"Chat completion request failed: {exc}") from exc

    if not isinstance(payload, dict):
        raise LLMError("Chat completion response is not a JSON object")
    choices = payload.get("choices") or []
    if not choices:
        return ""
    try:
        return choices[0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError) as exc:
        raise LLMError("Chat completion response has no message content") from exc


def _gemini_chat(messages: List[Dict[str, str]], settings: Settings) -> str:
    genai.configure(api_key=settings.google_api_key)
    system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
    prompt = "\n\n".join(m["content"] for m in messages if m["role"] != "system")
    model = genai.GenerativeModel(settings.llm_model, system_instruction=system or None)
    try:
        resp = model.generate_content(prompt)
    except Exception as exc:
        # google.api_core raises a wide family of errors here
        raise LLMError(f"Gemini request failed: {exc}") from exc
    try:
        return resp.text or ""
    except ValueError:
        # blocked or empty candidates
        return ""


def chat(messages: List[Dict[str, str]], settings: Optional[Settings] = None) -> str:
    """Send one chat completion and return the reply text ("" when the model said nothing)."""
    settings = settings or load_settings()
    if not settings.api_key:
        raise MissingAPIKeyError(
            f"API key for provider {settings.llm_provider!r} is missing. Check your environment configuration."
        )
    logger.info("LLM request: provider=%s model=%s messages=%d",
                settings.llm_provider, settings.llm_model, len(messages))
    if settings.llm_provider == "gemini":
        return _gemini_chat(messages, settings)
    return _openai_chat(messages, settings)


# ================== REQUESTS ==================
def fetch_summary(records: Sequence[TypedRecord], x_key: str, y_key: str,
                  settings: Optional[Settings] = None) -> str:
    content = (
        f"Analyze the data focusing on the relationship between {humanize_key(x_key)} "
        f"and {humanize_key(y_key)}. Summarize key trends and patterns: "
        f"{records_to_json(records, indent=2)}"
    )
    reply = chat(
        [
            {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ],
        settings,
    )
    return reply or NO_SUMMARY


def ask_question(question: str, records: Sequence[TypedRecord],
                 settings: Optional[Settings] = None) -> str:
    settings = settings or load_settings()
    head = list(records)[: settings.question_row_limit]
    reply = chat(
        [
            {"role": "system", "content": QUESTION_SYSTEM_PROMPT},
            {"role": "user", "content": f"Dataset: {records_to_json(head)}\n\nQuestion: {question}"},
        ],
        settings,
    )
    return reply or NO_ANSWER


def analyze(data: Sequence, question: Optional[str] = None,
            settings: Optional[Settings] = None) -> str:
    """Free-form question over arbitrary JSON rows, used by the HTTP endpoint."""
    settings = settings or load_settings()
    head = list(data)[: settings.question_row_limit]
    rows = [{k: to_jsonable(v) for k, v in r.items()} if isinstance(r, dict) else to_jsonable(r)
            for r in head]
    dataset = json.dumps(rows, ensure_ascii=False)
    reply = chat(
        [
            {"role": "system", "content": ANALYZE_SYSTEM_PROMPT},
            {"role": "user", "content": f"Dataset: {dataset}\nQuestion: {question or DEFAULT_QUESTION}"},
        ],
        settings,
    )
    return reply or NO_ANSWER


def parse_review(text: str) -> Dict:
    """Parse a ``{"issues": [...], "advice": "..."}`` reply, tolerating code fences.

    Anything that does not match that shape yields ``REVIEW_FALLBACK``.
    """
    cleaned = _remove_md_fences(text)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning("Review reply is not valid JSON: %.200s", cleaned)
        return {"issues": list(REVIEW_FALLBACK["issues"]), "advice": REVIEW_FALLBACK["advice"]}

    issues = parsed.get("issues") if isinstance(parsed, dict) else None
    advice = parsed.get("advice") if isinstance(parsed, dict) else None
    if not isinstance(issues, list) or not isinstance(advice, str):
        logger.warning("Review reply has an unexpected shape: %.200s", cleaned)
        return {"issues": list(REVIEW_FALLBACK["issues"]), "advice": REVIEW_FALLBACK["advice"]}
    return {"issues": [str(i) for i in issues], "advice": advice}


def review_data(records: Sequence[TypedRecord], settings: Optional[Settings] = None) -> Dict:
    settings = settings or load_settings()
    head = list(records)[: settings.question_row_limit]
    reply = chat(
        [
            {"role": "system", "content": REVIEW_SYSTEM_PROMPT},
            {"role": "user", "content": f"Dataset: {records_to_json(head)}"},
        ],
        settings,
    )
    return parse_review(reply)
