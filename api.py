"""
Password-gated HTTP endpoint for asking the LLM about a batch of rows.

Run with:  uvicorn api:app
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

import llm_client
from settings import Settings, get_config, load_settings

logging.basicConfig(level=get_config("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("trendlens.api")

app = FastAPI(title="TrendLens analyze API")


class AnalyzeRequest(BaseModel):
    password: str
    data: List[Any]
    question: Optional[str] = None


def get_settings() -> Settings:
    return load_settings()


@app.post("/analyze")
def analyze(body: AnalyzeRequest, settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    if not llm_client.is_access_granted(body.password, settings):
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        answer = llm_client.analyze(body.data, body.question, settings)
    except llm_client.LLMError:
        logger.exception("Analyze request failed")
        raise HTTPException(status_code=502, detail="Failed to get answer from the language model.")
    return {"answer": answer}


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}
