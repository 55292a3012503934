"""
Error taxonomy for PulsePoint.

InvalidInput and MissingField are raised at the ingestion boundary and never
reach the pipeline. PipelineError subclasses are local to one analysis run:
they are retried by the graph's retry policy and, once the budget is spent,
recorded on the run as its failure.
"""


class PulsePointError(Exception):
    """Base class for all PulsePoint errors."""


class InvalidInput(PulsePointError):
    """Request body is not parseable JSON."""

    def __init__(self, message: str = "Invalid JSON"):
        super().__init__(message)
        self.message = message


class MissingField(PulsePointError):
    """Required field is absent, of the wrong type, or empty."""

    def __init__(self, field: str = "text"):
        self.field = field
        self.message = f"Missing '{field}' field"
        super().__init__(self.message)


class PipelineError(PulsePointError):
    """A pipeline step failed. Carries the step name for the run's failure record."""

    def __init__(self, step: str, reason: str):
        super().__init__(f"{step}: {reason}")
        self.step = step
        self.reason = reason


class InferenceFailure(PipelineError):
    """Classifier or sentiment backend errored or timed out."""


class PersistenceFailure(PipelineError):
    """Record store append failed."""


class RunCancelled(PulsePointError):
    """The run was cancelled before its first step started."""

    def __init__(self, run_id: str):
        super().__init__(f"Run {run_id} was cancelled")
        self.run_id = run_id
