"""
Durable execution of the feedback analysis workflow.

submit() records a pending run and hands its id to an asyncio queue; a pool of
worker tasks drains the queue and calls execute(). Runs never share state
other than the SQLite store, and the graph checkpointer remembers each
finished step per run.
"""

import asyncio
from typing import Optional

from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.checkpoint.memory import InMemorySaver
from langgraph.types import RetryPolicy

from settings import WORKER_CONCURRENCY
from src.errors import MissingField, PipelineError, RunCancelled
from src.graph import create_graph
from src.logger import log
from src.models import AnalysisRun
from src.ports import Classifier, SentimentScorer
from src.store import FeedbackStore, RunStore


class AnalysisPipeline:
    """categorize → score → persist, once per submitted feedback text."""

    def __init__(
        self,
        classifier: Classifier,
        sentiment: SentimentScorer,
        store: FeedbackStore,
        runs: RunStore,
        retry_policy: Optional[RetryPolicy] = None,
        checkpointer: Optional[BaseCheckpointSaver] = None,
    ):
        self.classifier = classifier
        self.sentiment = sentiment
        self.store = store
        self.runs = runs
        self.checkpointer = checkpointer or InMemorySaver()
        self.graph = create_graph(retry_policy=retry_policy, checkpointer=self.checkpointer)

        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []

    # --- Scheduling ---

    def submit(self, text: str) -> str:
        """
        Schedule analysis of one feedback text and return the run id.

        Returns as soon as the pending run is stored; analysis happens on the
        worker pool. Runs submitted while no workers are running stay pending
        and are picked up by the next start().
        """
        if not isinstance(text, str) or not text:
            raise MissingField("text")

        run = self.runs.create(text)
        if self._queue is not None:
            self._queue.put_nowait(run.run_id)

        log(f"Scheduled run {run.run_id} ({len(text)} chars)")
        return run.run_id

    async def asubmit(self, text: str) -> str:
        """submit() for request handlers: the run insert happens off the event loop."""
        if not isinstance(text, str) or not text:
            raise MissingField("text")

        run = await asyncio.to_thread(self.runs.create, text)
        if self._queue is not None:
            self._queue.put_nowait(run.run_id)

        log(f"Scheduled run {run.run_id} ({len(text)} chars)")
        return run.run_id

    def cancel(self, run_id: str) -> bool:
        """Abort a run whose first step has not started yet."""
        cancelled = self.runs.cancel(run_id)
        if cancelled:
            log(f"Cancelled run {run_id} before start")
        return cancelled

    async def start(self, concurrency: int = WORKER_CONCURRENCY) -> None:
        """Start the worker pool and re-queue runs left unfinished by a previous process."""
        if self._queue is not None:
            return

        self._queue = asyncio.Queue()
        unfinished = self.runs.unfinished()
        for run_id in unfinished:
            self._queue.put_nowait(run_id)
        if unfinished:
            log(f"Recovered {len(unfinished)} unfinished run(s)")

        self._workers = [
            asyncio.create_task(self._worker(), name=f"pulsepoint-worker-{i}")
            for i in range(concurrency)
        ]
        log(f"Started {concurrency} pipeline worker(s)")

    async def join(self) -> None:
        """Wait until every queued run has been executed."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Cancel the workers. Runs interrupted mid-way are resumed by the next start()."""
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        log("Stopped pipeline workers")

    async def _worker(self) -> None:
        while True:
            run_id = await self._queue.get()
            try:
                await self.execute(run_id)
            except Exception as e:
                # Keep the worker alive; the run stays unfinished and is retried on restart
                log(f" Worker error on run {run_id}: {type(e).__name__}: {str(e)[:200]}")
            finally:
                self._queue.task_done()

    # --- Execution ---

    def _config(self, run_id: str) -> dict:
        return {
            "configurable": {
                "thread_id": run_id,
                "classifier": self.classifier,
                "sentiment": self.sentiment,
                "store": self.store,
                "runs": self.runs,
            }
        }

    async def execute(self, run_id: str) -> AnalysisRun:
        """
        Drive one run to a terminal state and return it.

        Terminal runs are returned untouched. A run whose checkpoint stopped
        between steps resumes at the first unfinished step. Store calls run in
        a worker thread so a locked database never blocks the event loop.
        """
        run = await asyncio.to_thread(self.runs.get, run_id)
        if run is None:
            raise LookupError(f"Unknown run: {run_id}")
        if run.is_terminal:
            return run

        config = self._config(run_id)
        snapshot = await self.graph.aget_state(config)
        if snapshot.next:
            log(f"Resuming run {run_id} at step {snapshot.next[0]}")
            graph_input = None
        else:
            graph_input = {
                "run_id": run_id,
                "text": run.input_text,
                "category": None,
                "sentiment": None,
                "record_id": None,
            }

        try:
            await self.graph.ainvoke(graph_input, config)
        except RunCancelled:
            log(f"  Run {run_id} was cancelled, skipping")
        except PipelineError as e:
            await self._fail(run_id, e.step, e.reason)
        except Exception as e:
            snapshot = await self.graph.aget_state(config)
            step = snapshot.next[0] if snapshot.next else "unknown"
            await self._fail(run_id, step, f"{type(e).__name__}: {e}")

        run = await asyncio.to_thread(self.runs.get, run_id)
        if run.is_terminal:
            # Terminal runs never resume, so their step cache can go
            await self.checkpointer.adelete_thread(run_id)
        return run

    async def process(self, text: str) -> AnalysisRun:
        """Create a run and execute it right away, bypassing the queue (CLI use)."""
        if not isinstance(text, str) or not text:
            raise MissingField("text")
        run = await asyncio.to_thread(self.runs.create, text)
        return await self.execute(run.run_id)

    async def _fail(self, run_id: str, step: str, reason: str) -> None:
        await asyncio.to_thread(self.runs.fail, run_id, step, reason)
        log(f"\n Run {run_id} failed at step '{step}' after retries")
        log(f"    Reason: {reason[:200]}")
