import logging
from enum import Enum
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError

from pathlab.services.errors import DuplicateSequenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Conflict(str, Enum):
    RECEIPT = "receipt"
    SEQUENCE = "sequence"
    OTHER = "other"


def classify_report_conflict(exc: IntegrityError) -> Conflict:
    """Tell a duplicate receipt apart from a duplicate report id using the driver message."""
    message = str(exc.orig if exc.orig is not None else exc).lower()
    if "receipt_no" in message or "receiptno" in message:
        return Conflict.RECEIPT
    if "report_id" in message or "reportid" in message:
        return Conflict.SEQUENCE
    return Conflict.OTHER


def retry_on_conflict(
    attempt: Callable[[], T],
    classify: Callable[[IntegrityError], Conflict],
    before_retry: Callable[[], None],
    max_attempts: int,
) -> T:
    """Run `attempt`, retrying only on sequence conflicts.

    Any other IntegrityError propagates untouched on the first occurrence so the
    caller can map it. `before_retry` runs between attempts.
    """
    for attempt_no in range(1, max_attempts + 1):
        try:
            return attempt()
        except IntegrityError as exc:
            if classify(exc) is not Conflict.SEQUENCE:
                raise
            logger.warning("Sequence conflict on attempt %s/%s", attempt_no, max_attempts)
            if attempt_no == max_attempts:
                raise DuplicateSequenceError(
                    f"Could not allocate a unique report id after {max_attempts} attempts"
                ) from exc
            before_retry()
    raise DuplicateSequenceError("No attempt was made to persist the report")
