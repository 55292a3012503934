import sqlite3

from langchain_core.runnables import RunnableConfig

from src.errors import PersistenceFailure
from src.models import AnalysisState
from src.logger import log


def persist(state: AnalysisState, config: RunnableConfig) -> dict:
    """
    Append the finished analysis to the record store.

    The append and the run's completion happen in one transaction, and a run
    that already owns a record gets that record back instead of a second row.
    """
    deps = config["configurable"]
    run_id = state["run_id"]

    deps["runs"].start_step(run_id, "persist")

    try:
        record = deps["store"].append(
            state["text"], state["category"], state["sentiment"], run_id=run_id
        )
    except sqlite3.Error as e:
        log(f" Persist failed for run {run_id}: {type(e).__name__}: {str(e)[:200]}")
        raise PersistenceFailure("persist", f"{type(e).__name__}: {e}") from e

    log(f"✓ Saved: run {run_id} → record #{record.id} {record.category} ({record.sentiment:.2f})")
    return {"record_id": record.id}
