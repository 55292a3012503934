from langchain_core.runnables import RunnableConfig

from src.errors import InferenceFailure, RunCancelled
from src.models import AnalysisState, CATEGORIES, DEFAULT_CATEGORY
from src.logger import log


def normalize_category(raw) -> str:
    """
    Coerce a raw classifier label into the closed category set.

    Whitespace is trimmed; anything that is not exactly a known category
    (including empty or non-string output) becomes the default category.
    """
    if not isinstance(raw, str):
        return DEFAULT_CATEGORY
    label = raw.strip()
    return label if label in CATEGORIES else DEFAULT_CATEGORY


def categorize(state: AnalysisState, config: RunnableConfig) -> dict:
    """
    Ask the classifier port for a category label.

    Backend errors are raised as InferenceFailure so the node's retry policy
    can retry them. Returns dict with category.
    """
    deps = config["configurable"]
    run_id = state["run_id"]

    # Only pending runs can be cancelled, so this is the last point to notice it
    if not deps["runs"].start_step(run_id, "categorize"):
        raise RunCancelled(run_id)

    try:
        raw = deps["classifier"].classify(state["text"])
    except Exception as e:
        log(f" Categorize failed for run {run_id}: {type(e).__name__}: {str(e)[:200]}")
        raise InferenceFailure("categorize", f"{type(e).__name__}: {e}") from e

    category = normalize_category(raw)
    if not isinstance(raw, str) or raw.strip() != category:
        log(f"  Run {run_id}: unrecognized label {str(raw)[:50]!r}, using {category}")

    return {"category": category}
