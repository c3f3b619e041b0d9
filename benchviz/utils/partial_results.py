"""
Fan-out of one storage operation to several backends.

Every backend call runs to completion concurrently. A backend that raises is
recorded as a :class:`BackendFailure` instead of propagating, so one
unreachable backend never blocks or fails the others. Deciding whether the
overall operation succeeded is left to the caller.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Mapping, TypeVar

from pydantic import ValidationError

from ..storage.errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BackendFailure:
    """
    One backend that raised during a fan-out.

    Attributes
    ----------
    backend : str
        Name of the backend (e.g., ``"file"``, ``"mongo"``)
    error : str
        Message of the exception the backend raised
    error_type : str
        Coarse category, one of ``storage_error``, ``timeout``,
        ``validation_error``, ``io_error`` or ``unknown_error``
    """

    backend: str
    error: str
    error_type: str


@dataclass
class PartialResult:
    """
    Outcome of a fan-out.

    Attributes
    ----------
    successes : Dict[str, Any]
        Return values keyed by backend name, in submission order
    failures : Dict[str, BackendFailure]
        Failures keyed by backend name, in submission order
    """

    successes: Dict[str, Any] = field(default_factory=dict)
    failures: Dict[str, BackendFailure] = field(default_factory=dict)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    @property
    def all_failed(self) -> bool:
        """True when at least one backend ran and none of them succeeded."""
        return not self.successes and bool(self.failures)


async def gather_partial(
    operations: Mapping[str, Awaitable[T]],
    action: str,
) -> PartialResult:
    """
    Await one operation per backend and split the outcomes.

    Parameters
    ----------
    operations : Mapping[str, Awaitable[T]]
        Backend name to the pending call on that backend
    action : str
        Short name of the operation, used in log event names
        (e.g., ``"session_save"``)

    Returns
    -------
    PartialResult
        Successes and failures keyed by backend name

    Raises
    ------
    ValueError
        If no operations were given

    Examples
    --------
    >>> result = await gather_partial(
    ...     {"file": file_store.save(session), "mongo": mongo_store.save(session)},
    ...     "session_save",
    ... )
    >>> sorted(result.successes), sorted(result.failures)
    (['file'], ['mongo'])
    """
    if not operations:
        raise ValueError("no backends to fan out to")

    names = list(operations)
    outcomes = await asyncio.gather(
        *(operations[name] for name in names), return_exceptions=True
    )

    result = PartialResult()
    for name, outcome in zip(names, outcomes):
        if isinstance(outcome, BaseException) and not isinstance(
            outcome, Exception
        ):
            # Cancellation and interpreter exits are not backend failures.
            raise outcome
        if isinstance(outcome, Exception):
            failure = BackendFailure(
                backend=name,
                error=str(outcome),
                error_type=classify_error(outcome),
            )
            result.failures[name] = failure
            logger.warning(
                f"storage.fanout.{action}.failed",
                extra={
                    "backend": name,
                    "error_type": failure.error_type,
                    "error": failure.error,
                },
            )
        else:
            result.successes[name] = outcome

    logger.debug(
        f"storage.fanout.{action}.complete",
        extra={
            "backends": names,
            "succeeded": list(result.successes),
            "failed": list(result.failures),
        },
    )
    return result


def classify_error(exc: Exception) -> str:
    """Map a backend exception to a coarse error category."""
    if isinstance(exc, StorageError):
        return "storage_error"
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return "timeout"
    if isinstance(exc, ValidationError):
        return "validation_error"
    if isinstance(exc, OSError):
        return "io_error"
    return "unknown_error"


def format_failure_summary(result: PartialResult) -> str:
    """
    One-line description of the failed backends for log records.

    Examples
    --------
    ``"1 of 2 backends failed: mongo [storage_error] connection refused"``
    """
    total = len(result.successes) + len(result.failures)
    if not result.failures:
        return f"all {total} backends succeeded"
    parts: List[str] = [
        f"{f.backend} [{f.error_type}] {f.error}" for f in result.failures.values()
    ]
    return f"{len(result.failures)} of {total} backends failed: " + "; ".join(parts)
