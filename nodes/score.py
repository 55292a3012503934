import math
from numbers import Real

from langchain_core.runnables import RunnableConfig

from src.errors import InferenceFailure
from src.models import AnalysisState, NEUTRAL_SENTIMENT
from src.logger import log


def _score_entries(response) -> list:
    """Unwrap the backend payload into a flat list of {label, score} entries."""
    if isinstance(response, dict):
        response = response.get("result")

    if not isinstance(response, list):
        return []

    # Hugging Face inference returns one list per input: [[{...}, {...}]]
    if response and all(isinstance(item, list) for item in response):
        response = response[0]

    return [
        entry for entry in response
        if isinstance(entry, dict)
        and isinstance(entry.get("label"), str)
        and isinstance(entry.get("score"), Real)
        and not isinstance(entry.get("score"), bool)
        and math.isfinite(entry["score"])
    ]


def resolve_sentiment(response) -> float:
    """
    Turn a sentiment backend payload into one positivity score in [0, 1].

    Resolution order: POSITIVE score as is, else 1 - NEGATIVE score,
    else the neutral default 0.5.
    """
    entries = _score_entries(response)
    positive = next((e for e in entries if e["label"] == "POSITIVE"), None)
    negative = next((e for e in entries if e["label"] == "NEGATIVE"), None)

    if positive is not None:
        value = float(positive["score"])
    elif negative is not None:
        value = 1.0 - float(negative["score"])
    else:
        return NEUTRAL_SENTIMENT

    return min(1.0, max(0.0, value))


def score(state: AnalysisState, config: RunnableConfig) -> dict:
    """
    Ask the sentiment port for polarity scores and resolve them to one float.

    Returns dict with sentiment.
    """
    deps = config["configurable"]
    run_id = state["run_id"]

    deps["runs"].start_step(run_id, "score")

    try:
        response = deps["sentiment"].score(state["text"])
    except Exception as e:
        log(f" Sentiment scoring failed for run {run_id}: {type(e).__name__}: {str(e)[:200]}")
        raise InferenceFailure("score", f"{type(e).__name__}: {e}") from e

    return {"sentiment": resolve_sentiment(response)}
