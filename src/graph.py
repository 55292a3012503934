from typing import Optional

from langgraph.graph import StateGraph, START, END
from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.checkpoint.memory import InMemorySaver
from langgraph.types import RetryPolicy

from settings import MAX_ATTEMPTS, RETRY_INITIAL_INTERVAL, RETRY_BACKOFF_FACTOR, RETRY_MAX_INTERVAL
from src.errors import PipelineError
from src.models import AnalysisState
from nodes.categorize import categorize
from nodes.score import score
from nodes.persist import persist


def default_retry_policy() -> RetryPolicy:
    """Bounded exponential backoff, applied to each step on its own."""
    return RetryPolicy(
        initial_interval=RETRY_INITIAL_INTERVAL,
        backoff_factor=RETRY_BACKOFF_FACTOR,
        max_interval=RETRY_MAX_INTERVAL,
        max_attempts=MAX_ATTEMPTS,
        jitter=True,
        retry_on=PipelineError,
    )


def create_graph(
    retry_policy: Optional[RetryPolicy] = None,
    checkpointer: Optional[BaseCheckpointSaver] = None,
):
    """
    Create the analysis workflow graph: categorize → score → persist.

    The checkpointer records each finished step per thread (one thread per run),
    so a step that fails and is retried never re-runs the steps before it.
    Ports and stores are passed at invoke time through config["configurable"].
    """
    retry_policy = retry_policy or default_retry_policy()

    # Initialize graph with state schema
    workflow = StateGraph(AnalysisState)

    # Add nodes
    workflow.add_node("categorize", categorize, retry_policy=retry_policy)
    workflow.add_node("score", score, retry_policy=retry_policy)
    workflow.add_node("persist", persist, retry_policy=retry_policy)

    # Add edges
    workflow.add_edge(START, "categorize")
    workflow.add_edge("categorize", "score")
    workflow.add_edge("score", "persist")
    workflow.add_edge("persist", END)

    # Compile with checkpointer (required for step-level resume)
    graph = workflow.compile(checkpointer=checkpointer or InMemorySaver())

    return graph
