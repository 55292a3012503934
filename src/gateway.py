import json

from pydantic import ValidationError

from src.errors import InvalidInput, MissingField
from src.models import FeedbackSubmission


def parse_submission(body: bytes) -> FeedbackSubmission:
    """
    Validate a raw POST /api/feedback body.

    Raises InvalidInput if the body isn't JSON, MissingField if it isn't an
    object with a non-empty string "text".
    """
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidInput() from e

    if not isinstance(payload, dict):
        raise MissingField("text")

    try:
        return FeedbackSubmission.model_validate({"text": payload.get("text")})
    except ValidationError as e:
        raise MissingField("text") from e


async def accept(pipeline, body: bytes) -> str:
    """Validate a submission and schedule its analysis. Returns the run id."""
    submission = parse_submission(body)
    return await pipeline.asubmit(submission.text)
