"""Shared fakes and fixtures for the test suites."""

import os
import sys
import tempfile
import shutil
from unittest.mock import patch
from io import StringIO

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from langgraph.types import RetryPolicy

from src.errors import PipelineError

# No backoff delay in tests
FAST_RETRY = RetryPolicy(initial_interval=0.0, max_attempts=3, jitter=False, retry_on=PipelineError)


class FakeClassifier:
    """Returns queued labels (or raises queued exceptions); the last item repeats."""

    def __init__(self, *responses):
        self.responses = list(responses) or ["Bugs"]
        self.calls = []

    def classify(self, text):
        self.calls.append(text)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class FakeSentiment:
    def __init__(self, *responses):
        self.responses = list(responses) or [[{"label": "POSITIVE", "score": 0.5}]]
        self.calls = []

    def score(self, text):
        self.calls.append(text)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def make_record(id, category, sentiment):
    from src.models import FeedbackRecord
    return FeedbackRecord(id=id, raw_text=f"feedback {id}", category=category,
                          sentiment=sentiment, created_at="2025-01-01 00:00:00")


class TempDirMixin:
    """Run each test in its own directory so the database and log stay isolated."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.original_dir = os.getcwd()
        os.chdir(self.test_dir)
        self.db_path = os.path.join(self.test_dir, "feedback.db")

        stdout = patch('sys.stdout', new=StringIO())
        stdout.start()
        self.addCleanup(stdout.stop)

    def tearDown(self):
        os.chdir(self.original_dir)
        shutil.rmtree(self.test_dir)

    def make_pipeline(self, classifier=None, sentiment=None):
        from src.pipeline import AnalysisPipeline
        from src.store import FeedbackStore, RunStore

        self.classifier = classifier or FakeClassifier("Bugs")
        self.sentiment = sentiment or FakeSentiment([{"label": "NEGATIVE", "score": 0.9}])
        self.store = FeedbackStore(self.db_path)
        self.runs = RunStore(self.db_path)
        return AnalysisPipeline(self.classifier, self.sentiment, self.store, self.runs,
                                retry_policy=FAST_RETRY)


