"""
Inference backends used by the pipeline.

The pipeline only depends on the two protocols. Neither backend is trusted:
classifier labels and sentiment payloads are normalized by the graph nodes.
"""

import os
from typing import Any, Protocol

import httpx
from langchain_anthropic import ChatAnthropic

from prompts import CATEGORIZE_SYSTEM_PROMPT
from settings import CLASSIFICATION_MODEL, SENTIMENT_API_URL, SENTIMENT_MODEL, SENTIMENT_TIMEOUT


class Classifier(Protocol):
    def classify(self, text: str) -> str:
        """Return the backend's raw category label for text."""
        ...


class SentimentScorer(Protocol):
    def score(self, text: str) -> Any:
        """Return the backend's raw list of {label, score} entries, in whatever shape it uses."""
        ...


class AnthropicClassifier:
    """Category classifier backed by a Claude chat model."""

    def __init__(self, model: str = CLASSIFICATION_MODEL, system_prompt: str = CATEGORIZE_SYSTEM_PROMPT):
        self.system_prompt = system_prompt
        self._llm = ChatAnthropic(model=model, temperature=0, max_tokens=16)

    def classify(self, text: str) -> str:
        result = self._llm.invoke([
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": text},
        ])
        content = result.content
        if isinstance(content, list):  # content blocks
            content = "".join(block.get("text", "") for block in content if isinstance(block, dict))
        return content


class HuggingFaceSentiment:
    """Polarity scorer backed by a Hugging Face inference endpoint."""

    def __init__(
        self,
        model: str = SENTIMENT_MODEL,
        api_url: str = SENTIMENT_API_URL,
        token: str | None = None,
        timeout: float = SENTIMENT_TIMEOUT,
    ):
        self.url = api_url.format(model=model)
        self.token = token if token is not None else os.environ.get("HF_TOKEN", "")
        self.timeout = timeout

    def score(self, text: str) -> Any:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(self.url, headers=headers, json={"inputs": text})
            response.raise_for_status()
            return response.json()
