"""Batch pipeline: split fragment values, translate batches, reinsert by position."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from .errors import (
    BatchFailure,
    ErrorAggregate,
    TranslationCancelled,
    TranslationGatewayError,
)
from .gateways import TranslationGateway
from .splitter import BatchSplitter
from .structures import Batch, FragmentSequence

logger = logging.getLogger(__name__)

CancelCheck = Callable[[], bool]
BatchCallback = Callable[["PipelineReport", Batch], None]


@dataclass
class PipelineReport:
    """Outcome of one pipeline run over a single fragment sequence."""

    region: str
    total_fragments: int = 0
    total_batches: int = 0
    succeeded_batches: int = 0
    translated_fragments: int = 0
    cancelled: bool = False
    errors: ErrorAggregate = field(default_factory=ErrorAggregate)

    @property
    def failed_batches(self) -> int:
        return len(self.errors)

    @property
    def attempted_batches(self) -> int:
        return self.succeeded_batches + self.failed_batches

    @property
    def ok(self) -> bool:
        return not self.errors and not self.cancelled


def run_batches(
    fragments: FragmentSequence,
    gateway: TranslationGateway,
    *,
    target_language: str,
    source_language: str | None = None,
    should_cancel: Optional[CancelCheck] = None,
    on_batch: Optional[BatchCallback] = None,
) -> PipelineReport:
    """Translate ``fragments`` in place and return the report without raising.

    Batches are sent one at a time. A failed batch is recorded in the
    report's error aggregate and leaves its fragments untouched; later
    batches are still attempted.
    """

    report = PipelineReport(region=fragments.region, total_fragments=len(fragments))
    if not len(fragments):
        return report

    values = fragments.values()
    splitter = BatchSplitter(gateway.max_items, gateway.max_request_size)
    batches = splitter.split(values)
    report.total_batches = len(batches)
    logger.debug(
        "%s: %d fragments in %d batches (limits: %d items, %d characters)",
        fragments.region,
        len(fragments),
        len(batches),
        gateway.max_items,
        gateway.max_request_size,
    )

    offset = 0
    for batch in batches:
        if should_cancel is not None and should_cancel():
            report.cancelled = True
            logger.info(
                "%s: cancelled before batch %d of %d",
                fragments.region,
                batch.batch_index + 1,
                len(batches),
            )
            break

        # Offsets come from this sequence's own batches only.
        start = offset
        offset += len(batch)

        try:
            translated = gateway.translate_batch(
                batch.items,
                target_language=target_language,
                source_language=source_language,
            )
            if len(translated) != len(batch):
                raise TranslationGatewayError(
                    f"Gateway returned {len(translated)} results for a batch of {len(batch)}."
                )
            fragments.assign_range(start, translated)
        except Exception as exc:
            failure = BatchFailure(
                region=fragments.region,
                batch_index=batch.batch_index,
                start=start,
                length=len(batch),
                error=exc,
            )
            report.errors.add(failure)
            logger.warning("%s", failure.describe())
        else:
            report.succeeded_batches += 1
            report.translated_fragments += len(translated)
            logger.debug(
                "%s: batch %d done (%d fragments, %d characters)",
                fragments.region,
                batch.batch_index + 1,
                len(batch),
                batch.size,
            )

        if on_batch is not None:
            try:
                on_batch(report, batch)
            except Exception:
                logger.exception(
                    "%s: progress callback failed after batch %d",
                    fragments.region,
                    batch.batch_index + 1,
                )

    logger.info(
        "%s: %d of %d batches translated, %d failed",
        fragments.region,
        report.succeeded_batches,
        report.total_batches,
        report.failed_batches,
    )
    return report


def translate_fragments(
    fragments: FragmentSequence,
    gateway: TranslationGateway,
    *,
    target_language: str,
    source_language: str | None = None,
    should_cancel: Optional[CancelCheck] = None,
    on_batch: Optional[BatchCallback] = None,
) -> PipelineReport:
    """Translate ``fragments`` in place, raising once if any batch failed.

    Raises :class:`TranslationAggregateError` after every batch has been
    attempted; translations from successful batches remain applied.
    """

    report = run_batches(
        fragments,
        gateway,
        target_language=target_language,
        source_language=source_language,
        should_cancel=should_cancel,
        on_batch=on_batch,
    )
    if report.cancelled:
        raise TranslationCancelled(
            f"Translation of {fragments.region} cancelled after "
            f"{report.attempted_batches} of {report.total_batches} batches.",
            completed_batches=report.attempted_batches,
            total_batches=report.total_batches,
        )
    report.errors.raise_if_failed()
    return report
