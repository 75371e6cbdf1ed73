"""High-level orchestration for document translation."""

from __future__ import annotations

import logging
import pathlib
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .documents import BaseDocumentHandler, detect_handler
from .errors import (
    DocbridgeError,
    ErrorAggregate,
    OverwriteRefusedError,
    TranslationCancelled,
)
from .gateways import TranslationGateway
from .pipeline import CancelCheck, PipelineReport, run_batches
from .splitter import BatchSplitter

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PipelineReport], None]


@dataclass
class TranslationSummary:
    """Report returned after processing a document."""

    input_path: pathlib.Path
    output_path: pathlib.Path
    document_type: str
    gateway_name: str
    target_language: str
    source_language: str | None
    regions: List[PipelineReport] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    errors: ErrorAggregate = field(default_factory=ErrorAggregate)

    @property
    def total_fragments(self) -> int:
        return sum(report.total_fragments for report in self.regions)

    @property
    def translated_fragments(self) -> int:
        return sum(report.translated_fragments for report in self.regions)

    @property
    def total_batches(self) -> int:
        return sum(report.total_batches for report in self.regions)

    @property
    def failed_batches(self) -> int:
        return len(self.errors)

    @property
    def error_messages(self) -> List[str]:
        return self.errors.messages()

    @property
    def complete(self) -> bool:
        return not self.errors


class TranslationRunner:
    """Coordinates extraction, translation, reinsertion and saving."""

    def __init__(
        self,
        *,
        input_path: pathlib.Path,
        output_path: pathlib.Path,
        gateway: TranslationGateway,
        target_language: str,
        source_language: str | None = None,
        ignore_hidden: bool = False,
        strict: bool = False,
        should_cancel: Optional[CancelCheck] = None,
        on_region: Optional[ProgressCallback] = None,
    ) -> None:
        self.input_path = input_path
        self.output_path = output_path
        self.gateway = gateway
        self.target_language = target_language
        self.source_language = source_language
        self.ignore_hidden = ignore_hidden
        self.strict = strict
        self.should_cancel = should_cancel
        self.on_region = on_region

    def run(self) -> TranslationSummary:
        start_time = time.time()
        # Invalid gateway limits fail before the document is opened.
        BatchSplitter(self.gateway.max_items, self.gateway.max_request_size)

        document_type, handler = detect_handler(
            self.input_path, ignore_hidden=self.ignore_hidden
        )
        summary = TranslationSummary(
            input_path=self.input_path,
            output_path=self.output_path,
            document_type=document_type,
            gateway_name=self.gateway.name,
            target_language=self.target_language,
            source_language=self.source_language,
        )

        self._translate_regions(handler, summary)

        handler.commit()
        handler.save(self.output_path)
        summary.elapsed_seconds = time.time() - start_time
        logger.info(
            "Saved %s (%d of %d fragments translated, %d failed batches)",
            self.output_path,
            summary.translated_fragments,
            summary.total_fragments,
            summary.failed_batches,
        )

        if self.strict:
            summary.errors.raise_if_failed()
        return summary

    def _translate_regions(
        self,
        handler: BaseDocumentHandler,
        summary: TranslationSummary,
    ) -> None:
        # Extract every region first so a malformed part aborts before any
        # remote call or mutation.
        sequences = [handler.extract_fragments(region) for region in handler.regions()]

        for fragments in sequences:
            report = run_batches(
                fragments,
                self.gateway,
                target_language=self.target_language,
                source_language=self.source_language,
                should_cancel=self.should_cancel,
            )
            summary.regions.append(report)
            summary.errors.extend(report.errors)
            if self.on_region is not None:
                self.on_region(report)
            if report.cancelled:
                raise TranslationCancelled(
                    f"Translation cancelled while processing {fragments.region}.",
                    completed_batches=sum(r.attempted_batches for r in summary.regions),
                    total_batches=sum(r.total_batches for r in summary.regions),
                )


def translate_document(
    input_path: pathlib.Path | str,
    output_path: pathlib.Path | str,
    gateway: TranslationGateway,
    *,
    target_language: str,
    source_language: str | None = None,
    ignore_hidden: bool = False,
    strict: bool = False,
    should_cancel: Optional[CancelCheck] = None,
) -> TranslationSummary:
    """Translate one document file into ``output_path``."""

    runner = TranslationRunner(
        input_path=pathlib.Path(input_path),
        output_path=pathlib.Path(output_path),
        gateway=gateway,
        target_language=target_language,
        source_language=source_language,
        ignore_hidden=ignore_hidden,
        strict=strict,
        should_cancel=should_cancel,
    )
    return runner.run()


def validate_paths(
    input_path: pathlib.Path,
    output_path: pathlib.Path,
    force_overwrite: bool,
) -> None:
    """Validate input/output path combinations and overwrite policy."""

    if not input_path.exists():
        raise FileNotFoundError(
            "Input file not found. Please provide a readable .docx, .pptx or .xlsx file."
        )
    if not input_path.is_file():
        raise DocbridgeError("Input path must be a file.")

    if input_path.resolve() == output_path.resolve():
        raise OverwriteRefusedError(
            "The output path matches the input document. Refusing to overwrite the source file."
        )

    if output_path.exists() and not force_overwrite:
        raise OverwriteRefusedError(
            "The output file already exists. Rename it or use the overwrite flag."
        )
