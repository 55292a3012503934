"""
Defensive test suite.

Focused on error handling and edge cases that matter in production:
- Input validation at the gateway
- Step retries and failure isolation
- Exactly-once persistence
- Store invariants
- HTTP error responses
- API key check
"""

import unittest
import json
import os
import sqlite3
import sys
from unittest.mock import patch
from io import StringIO

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tests.helpers import FakeClassifier, FakeSentiment, TempDirMixin


class TestInputValidation(unittest.TestCase):
    """Gateway validation"""

    def test_invalid_json(self):
        from src.gateway import parse_submission
        from src.errors import InvalidInput

        for body in [b"not valid json {", b"", b"\xff\xfe\x00garbage"]:
            with self.assertRaises(InvalidInput) as cm:
                parse_submission(body)
            self.assertEqual(cm.exception.message, "Invalid JSON")

    def test_missing_text_field(self):
        from src.gateway import parse_submission
        from src.errors import MissingField

        bodies = [
            {},
            {"text": ""},
            {"text": None},
            {"text": 42},
            {"text": ["App crashes"]},
            {"body": "App crashes"},
            ["App crashes"],
            "App crashes",
        ]
        for body in bodies:
            with self.assertRaises(MissingField, msg=f"body={body!r}") as cm:
                parse_submission(json.dumps(body).encode())
            self.assertEqual(cm.exception.message, "Missing 'text' field")

    def test_valid_submission(self):
        from src.gateway import parse_submission

        submission = parse_submission(b'{"text": "App crashes on login", "extra": 1}')
        self.assertEqual(submission.text, "App crashes on login")


class TestPipelineRecovery(TempDirMixin, unittest.IsolatedAsyncioTestCase):
    """Step retries, failure handling and exactly-once completion"""

    def make_counting_pipeline(self, classifier, sentiment, fail_appends=0):
        """Pipeline whose store counts append calls and fails the first N with a locked database."""
        from src.store import FeedbackStore

        pipeline = self.make_pipeline(classifier, sentiment)

        class CountingStore(FeedbackStore):
            append_calls = 0

            def append(store_self, *args, **kwargs):
                store_self.append_calls += 1
                if store_self.append_calls <= fail_appends:
                    raise sqlite3.OperationalError("database is locked")
                return super().append(*args, **kwargs)

        self.store = CountingStore(self.db_path)
        pipeline.store = self.store
        return pipeline

    async def test_retries_do_not_rerun_earlier_steps(self):
        """Categorize fails twice, score once; persist still runs exactly once"""
        pipeline = self.make_counting_pipeline(
            FakeClassifier(TimeoutError("timed out"), ConnectionError("reset"), "Billing"),
            FakeSentiment(RuntimeError("503"), [{"label": "POSITIVE", "score": 0.7}]),
        )

        run = await pipeline.process("I was charged twice")

        self.assertEqual(run.status, "complete")
        self.assertEqual(run.attempts, {"categorize": 3, "score": 2, "persist": 1})
        self.assertEqual(len(self.classifier.calls), 3)
        self.assertEqual(len(self.sentiment.calls), 2)
        self.assertEqual(self.store.append_calls, 1)
        self.assertEqual(len(self.store.recent()), 1)

    async def test_persist_retry_keeps_cached_results(self):
        """A failed append is retried without calling the inference backends again"""
        pipeline = self.make_counting_pipeline(
            FakeClassifier("Bugs"),
            FakeSentiment([{"label": "NEGATIVE", "score": 0.8}]),
            fail_appends=1,
        )

        run = await pipeline.process("Export button does nothing")

        self.assertEqual(run.status, "complete")
        self.assertEqual(run.attempts["persist"], 2)
        self.assertEqual(len(self.classifier.calls), 1)
        self.assertEqual(len(self.sentiment.calls), 1)
        self.assertEqual(self.store.append_calls, 2)
        self.assertEqual(len(self.store.recent()), 1)

    async def test_inference_failure_after_retry_budget(self):
        """Exhausted categorize marks the run failed and persists nothing"""
        pipeline = self.make_pipeline(
            FakeClassifier(ConnectionError("backend down")),
            FakeSentiment([{"label": "POSITIVE", "score": 0.9}]),
        )

        run = await pipeline.process("Love the new release")

        self.assertEqual(run.status, "failed")
        self.assertEqual(run.failed_step, "categorize")
        self.assertIn("backend down", run.error)
        self.assertEqual(run.attempts["categorize"], 3)
        self.assertEqual(run.attempts["score"], 0)
        self.assertIsNone(run.category)
        self.assertIsNone(run.sentiment)
        self.assertIsNone(run.record_id)
        self.assertEqual(self.sentiment.calls, [])
        self.assertEqual(self.store.recent(), [])

        # Failed runs are queryable for monitoring
        failed = self.runs.list_runs(status="failed")
        self.assertEqual([r.run_id for r in failed], [run.run_id])

    async def test_persistence_failure_after_retry_budget(self):
        pipeline = self.make_counting_pipeline(
            FakeClassifier("Bugs"),
            FakeSentiment([{"label": "POSITIVE", "score": 0.4}]),
            fail_appends=99,
        )

        run = await pipeline.process("Page is blank")

        self.assertEqual(run.status, "failed")
        self.assertEqual(run.failed_step, "persist")
        self.assertIn("database is locked", run.error)
        self.assertIsNone(run.record_id)
        self.assertEqual(self.store.recent(), [])

    async def test_failed_run_does_not_affect_others(self):
        """Concurrent runs are isolated from each other's failures"""

        class FlakyClassifier(FakeClassifier):
            def classify(self, text):
                self.calls.append(text)
                if "boom" in text:
                    raise RuntimeError("boom")
                return "FeatureRequests"

        pipeline = self.make_pipeline(FlakyClassifier(), FakeSentiment([{"label": "POSITIVE", "score": 0.9}]))
        await pipeline.start(concurrency=3)
        try:
            bad = pipeline.submit("boom")
            good = [pipeline.submit(f"Please add feature {i}") for i in range(4)]
            await pipeline.join()
        finally:
            await pipeline.stop()

        self.assertEqual(self.runs.get(bad).status, "failed")
        for run_id in good:
            self.assertEqual(self.runs.get(run_id).status, "complete")
        self.assertEqual(len(self.store.recent()), 4)

    async def test_unknown_sentiment_shape_is_neutral(self):
        pipeline = self.make_pipeline(FakeClassifier("Billing"), FakeSentiment({"unexpected": True}))

        run = await pipeline.process("Where is my invoice?")

        self.assertEqual(run.status, "complete")
        self.assertEqual(run.sentiment, 0.5)

    async def test_cancel_before_start(self):
        """A pending run can be aborted; it then never calls a backend"""
        pipeline = self.make_pipeline()
        run_id = pipeline.submit("Never mind")

        self.assertTrue(pipeline.cancel(run_id))
        run = await pipeline.execute(run_id)

        self.assertEqual(run.status, "failed")
        self.assertEqual(run.failed_step, "pending")
        self.assertEqual(self.classifier.calls, [])
        self.assertEqual(self.store.recent(), [])

    async def test_cannot_cancel_started_run(self):
        pipeline = self.make_pipeline()
        run = await pipeline.process("App crashes")

        self.assertFalse(pipeline.cancel(run.run_id))
        self.assertEqual(self.runs.get(run.run_id).status, "complete")

    async def test_submit_rejects_empty_text(self):
        from src.errors import MissingField

        pipeline = self.make_pipeline()
        for text in ["", None, 7]:
            with self.assertRaises(MissingField):
                pipeline.submit(text)
        self.assertEqual(self.runs.list_runs(), [])

    async def test_execute_unknown_run(self):
        pipeline = self.make_pipeline()
        with self.assertRaises(LookupError):
            await pipeline.execute("does-not-exist")

    def interrupt_after_categorize(self, pipeline, run_id, text):
        """Run only the first step of a run, as a worker shutdown mid-run would leave it."""
        initial = {"run_id": run_id, "text": text, "category": None, "sentiment": None, "record_id": None}
        return pipeline.graph.ainvoke(initial, pipeline._config(run_id), interrupt_after=["categorize"])

    async def test_resume_starts_at_first_unfinished_step(self):
        pipeline = self.make_pipeline(
            FakeClassifier("Billing"),
            FakeSentiment([{"label": "NEGATIVE", "score": 0.6}]),
        )
        run_id = pipeline.submit("Charged after cancelling")
        await self.interrupt_after_categorize(pipeline, run_id, "Charged after cancelling")
        self.assertEqual(self.runs.get(run_id).status, "categorizing")

        run = await pipeline.execute(run_id)

        self.assertEqual(run.status, "complete")
        self.assertEqual(run.category, "Billing")
        self.assertAlmostEqual(run.sentiment, 0.4)
        self.assertEqual(run.attempts, {"categorize": 1, "score": 1, "persist": 1})
        self.assertEqual(len(self.classifier.calls), 1)
        self.assertEqual(len(self.sentiment.calls), 1)
        self.assertEqual(len(self.store.recent()), 1)

    async def test_restart_reruns_interrupted_run_from_first_step(self):
        """Step results live in memory, so a new process starts a recovered run over"""
        first = self.make_pipeline(FakeClassifier("Billing"))
        run_id = first.submit("Refund still missing")
        await self.interrupt_after_categorize(first, run_id, "Refund still missing")

        # Same database, fresh checkpointer
        restarted = self.make_pipeline(
            FakeClassifier("Billing"),
            FakeSentiment([{"label": "NEGATIVE", "score": 0.7}]),
        )
        await restarted.start(concurrency=1)
        try:
            await restarted.join()
        finally:
            await restarted.stop()

        run = self.runs.get(run_id)
        self.assertEqual(run.status, "complete")
        self.assertEqual(run.attempts["categorize"], 2)
        self.assertEqual(len(self.classifier.calls), 1)
        self.assertEqual(len(self.store.recent()), 1)

    async def test_terminal_runs_release_checkpoints(self):
        pipeline = self.make_pipeline(FakeClassifier("Bugs"), FakeSentiment(RuntimeError("503")))

        failed = [await pipeline.process(f"Broken page {i}") for i in range(3)]
        self.assertEqual([run.status for run in failed], ["failed"] * 3)

        pipeline.sentiment = FakeSentiment([{"label": "POSITIVE", "score": 0.9}])
        run_id = pipeline.submit("Works great now")
        await self.interrupt_after_categorize(pipeline, run_id, "Works great now")
        self.assertTrue(list(pipeline.checkpointer.list(None)))
        self.assertEqual((await pipeline.execute(run_id)).status, "complete")

        self.assertEqual(list(pipeline.checkpointer.list(None)), [])

    async def test_async_submit_stores_run_off_event_loop(self):
        import threading
        from src.errors import MissingField

        pipeline = self.make_pipeline()
        loop_thread = threading.get_ident()
        create_threads = []
        create = self.runs.create

        def tracking_create(text):
            create_threads.append(threading.get_ident())
            return create(text)

        with self.assertRaises(MissingField):
            await pipeline.asubmit("")

        with patch.object(self.runs, "create", side_effect=tracking_create):
            await pipeline.start(concurrency=1)
            try:
                run_id = await pipeline.asubmit("Checkout hangs")
                await pipeline.join()
            finally:
                await pipeline.stop()

        self.assertEqual(len(create_threads), 1)
        self.assertNotIn(loop_thread, create_threads)
        self.assertEqual(self.runs.get(run_id).status, "complete")

    async def test_nodes_return_only_their_step_result(self):
        from nodes.categorize import categorize
        from nodes.score import score
        from src.models import AnalysisState

        pipeline = self.make_pipeline(FakeClassifier("Billing"), FakeSentiment([{"label": "POSITIVE", "score": 0.9}]))
        run_id = pipeline.submit("Invoice is wrong")
        state = {"run_id": run_id, "text": "Invoice is wrong", "category": None, "sentiment": None, "record_id": None}
        config = pipeline._config(run_id)

        self.assertEqual(categorize(state, config), {"category": "Billing"})
        self.assertEqual(score(state, config), {"sentiment": 0.9})
        self.assertEqual(set(AnalysisState.__annotations__), set(state))


class TestBackendOutput(unittest.TestCase):
    """Sentiment payloads that carry no usable score"""

    def test_non_finite_scores_are_neutral(self):
        from nodes.score import resolve_sentiment

        self.assertEqual(resolve_sentiment([{"label": "POSITIVE", "score": float("nan")}]), 0.5)
        self.assertEqual(resolve_sentiment([{"label": "NEGATIVE", "score": float("inf")}]), 0.5)
        self.assertEqual(resolve_sentiment([[{"label": "POSITIVE", "score": float("-inf")}]]), 0.5)

    def test_non_finite_entry_falls_through_to_next_label(self):
        from nodes.score import resolve_sentiment

        payload = [{"label": "POSITIVE", "score": float("nan")}, {"label": "NEGATIVE", "score": 0.8}]
        self.assertAlmostEqual(resolve_sentiment(payload), 0.2)


class TestStoreInvariants(TempDirMixin, unittest.TestCase):
    """Record store and run bookkeeping"""

    def setUp(self):
        super().setUp()
        from src.store import FeedbackStore, RunStore
        self.store = FeedbackStore(self.db_path)
        self.runs = RunStore(self.db_path)

    def test_ids_are_monotonic_and_recent_is_newest_first(self):
        first = self.store.append("one", "Bugs", 0.1)
        second = self.store.append("two", "Billing", 0.9)
        third = self.store.append("three", "FeatureRequests", 0.5)

        self.assertLess(first.id, second.id)
        self.assertLess(second.id, third.id)
        self.assertEqual([r.id for r in self.store.recent()], [third.id, second.id, first.id])
        self.assertEqual([r.id for r in self.store.recent(limit=2)], [third.id, second.id])

    def test_append_for_run_is_idempotent(self):
        run = self.runs.create("Refund never arrived")

        first = self.store.append(run.input_text, "Billing", 0.2, run_id=run.run_id)
        second = self.store.append(run.input_text, "Billing", 0.2, run_id=run.run_id)

        self.assertEqual(first.id, second.id)
        self.assertEqual(len(self.store.recent()), 1)

        completed = self.runs.get(run.run_id)
        self.assertEqual(completed.status, "complete")
        self.assertEqual(completed.record_id, first.id)

    def test_rejects_invalid_records(self):
        with self.assertRaises(ValueError):
            self.store.append("text", "Feature Requests", 0.5)
        with self.assertRaises(ValueError):
            self.store.append("text", "Bugs", 1.5)
        self.assertEqual(self.store.recent(), [])

    def test_terminal_runs_are_immutable(self):
        run = self.runs.create("Login page is slow")
        self.assertTrue(self.runs.fail(run.run_id, "score", "timeout"))

        self.assertFalse(self.runs.start_step(run.run_id, "persist"))
        self.assertFalse(self.runs.fail(run.run_id, "persist", "again"))
        with self.assertRaises(ValueError):
            self.store.append(run.input_text, "Bugs", 0.5, run_id=run.run_id)

        failed = self.runs.get(run.run_id)
        self.assertEqual(failed.failed_step, "score")
        self.assertEqual(failed.error, "timeout")
        self.assertEqual(self.store.recent(), [])

    def test_unknown_status_filter(self):
        with self.assertRaises(ValueError):
            self.runs.list_runs(status="done")


class TestHttpErrors(TempDirMixin, unittest.TestCase):
    """HTTP status codes and error bodies"""

    def setUp(self):
        super().setUp()
        from fastapi.testclient import TestClient
        from src.api import create_app

        pipeline = self.make_pipeline()
        self.client = TestClient(create_app(pipeline, self.store, start_workers=False))

    def test_invalid_json(self):
        response = self.client.post("/api/feedback", content=b"{not json",
                                    headers={"content-type": "application/json"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Invalid JSON"})

    def test_empty_text_creates_no_run(self):
        response = self.client.post("/api/feedback", json={"text": ""})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Missing 'text' field"})
        self.assertEqual(self.runs.list_runs(), [])

    def test_non_string_text(self):
        response = self.client.post("/api/feedback", json={"text": 123})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Missing 'text' field"})

    def test_accepted_run_is_pending(self):
        response = self.client.post("/api/feedback", json={"text": "Dark mode please"})
        self.assertEqual(response.status_code, 202)
        self.assertTrue(response.json()["accepted"])

        run = self.runs.get(response.json()["run_id"])
        self.assertEqual(run.status, "pending")
        self.assertEqual(self.classifier.calls, [])

    def test_unknown_routes(self):
        for method, path in [("GET", "/nope"), ("GET", "/api/feedback"),
                             ("DELETE", "/api/feedback"), ("POST", "/")]:
            response = self.client.request(method, path)
            self.assertEqual(response.status_code, 404, f"{method} {path}")
            self.assertEqual(response.json(), {"error": "Not found"})

    def test_unknown_run(self):
        response = self.client.get("/api/runs/missing")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Not found"})

    def test_failed_runs_listing(self):
        run = self.runs.create("Crash on save")
        self.runs.fail(run.run_id, "categorize", "InferenceFailure: timeout")
        self.runs.create("Still pending")

        response = self.client.get("/api/runs", params={"status": "failed"})
        self.assertEqual(response.status_code, 200)
        runs = response.json()
        self.assertEqual([r["run_id"] for r in runs], [run.run_id])
        self.assertEqual(runs[0]["failed_step"], "categorize")


class TestApiKey(TempDirMixin, unittest.TestCase):
    """Commands that call the classifier need credentials"""

    def test_missing_api_key(self):
        from main import main

        with patch.dict(os.environ, {}, clear=True):
            with patch('sys.stdout', new=StringIO()) as output:
                with self.assertRaises(SystemExit) as cm:
                    main(["--db", self.db_path, "submit", "App crashes"])

        self.assertEqual(cm.exception.code, 1)
        self.assertIn("ANTHROPIC_API_KEY", output.getvalue())


if __name__ == "__main__":
    unittest.main()
