"""Error definitions and the per-run error aggregate for docbridge."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional


class DocbridgeError(Exception):
    """Base exception for all custom errors."""


class UnsupportedFileTypeError(DocbridgeError):
    """Raised when a given file extension or MIME type is not supported."""


class OverwriteRefusedError(DocbridgeError):
    """Raised when attempting to overwrite an output without consent."""


class GatewayConfigurationError(DocbridgeError):
    """Raised when the translation gateway is misconfigured."""


class TranslationGatewayError(DocbridgeError):
    """Raised when a single gateway call fails as a whole."""


class ExtractionError(DocbridgeError):
    """Raised when a document package cannot be opened or walked."""


class SplitterLimitError(DocbridgeError):
    """Raised when a gateway declares batch limits that cannot be honoured."""


class ReinsertionError(DocbridgeError):
    """Raised when a translated value cannot be written back to its slot."""


class TranslationCancelled(DocbridgeError):
    """Raised when a cancellation request stopped a run between batches."""

    def __init__(self, message: str, *, completed_batches: int, total_batches: int) -> None:
        super().__init__(message)
        self.completed_batches = completed_batches
        self.total_batches = total_batches


@dataclass
class BatchFailure:
    """Context for one batch whose gateway call failed."""

    region: str
    batch_index: int
    start: int
    length: int
    error: BaseException

    @property
    def stop(self) -> int:
        return self.start + self.length

    def describe(self) -> str:
        return (
            f"{self.region}: batch {self.batch_index + 1} "
            f"(fragments {self.start}-{self.stop - 1}) failed: {self.error}"
        )


@dataclass
class ErrorAggregate:
    """Ordered collection of batch failures accumulated across a run."""

    failures: List[BatchFailure] = field(default_factory=list)

    def add(self, failure: BatchFailure) -> None:
        self.failures.append(failure)

    def extend(self, other: "ErrorAggregate") -> None:
        self.failures.extend(other.failures)

    def __len__(self) -> int:
        return len(self.failures)

    def __iter__(self) -> Iterator[BatchFailure]:
        return iter(self.failures)

    def __bool__(self) -> bool:
        return bool(self.failures)

    def messages(self) -> List[str]:
        return [failure.describe() for failure in self.failures]

    def to_exception(self) -> Optional["TranslationAggregateError"]:
        """Return the composite error, or ``None`` when nothing failed."""

        if not self.failures:
            return None
        return TranslationAggregateError(self)

    def raise_if_failed(self) -> None:
        error = self.to_exception()
        if error is not None:
            raise error


class TranslationAggregateError(DocbridgeError):
    """Bundles every batch failure of a run into a single error."""

    def __init__(self, aggregate: ErrorAggregate) -> None:
        self.aggregate = aggregate
        count = len(aggregate)
        noun = "batch" if count == 1 else "batches"
        details = "\n".join(f"- {message}" for message in aggregate.messages())
        super().__init__(f"{count} translation {noun} failed:\n{details}")

    @property
    def failures(self) -> List[BatchFailure]:
        return self.aggregate.failures

    @property
    def exceptions(self) -> List[BaseException]:
        return [failure.error for failure in self.aggregate.failures]
