"""Command line interface for docbridge."""

from __future__ import annotations

import argparse
import logging
import pathlib
import re
import sys
from typing import Iterable, Optional

from .configuration import DocbridgeSettings, get_settings
from .errors import (
    DocbridgeError,
    ExtractionError,
    GatewayConfigurationError,
    OverwriteRefusedError,
    TranslationAggregateError,
    TranslationCancelled,
    UnsupportedFileTypeError,
)
from .gateways import build_gateway
from .translator import TranslationRunner, TranslationSummary, validate_paths

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 2
EXIT_PARTIAL = 3

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docbridge",
        description=(
            "Translate Word (.docx), PowerPoint (.pptx) and Excel (.xlsx) "
            "documents in place while preserving layout."
        ),
    )
    parser.add_argument(
        "input_file",
        help="Path to the .docx, .pptx or .xlsx file to translate.",
    )
    parser.add_argument(
        "-t",
        "--target-language",
        required=True,
        help="Destination language code (for example 'es' or 'de').",
    )
    parser.add_argument(
        "-s",
        "--source-language",
        help="Optional source language code. Omit to let the service detect it.",
    )
    parser.add_argument(
        "-o",
        "--output",
        help="Output file path. Defaults to appending the target language code.",
    )
    parser.add_argument(
        "-g",
        "--gateway",
        help="Translation gateway: openai, legacy-openai, google or echo "
        "(default: DOCBRIDGE_GATEWAY or openai).",
    )
    parser.add_argument(
        "-m",
        "--model",
        help="Model or deployment identifier for LLM gateways.",
    )
    parser.add_argument(
        "--max-items",
        type=int,
        help="Override the maximum number of texts per request.",
    )
    parser.add_argument(
        "--max-request-size",
        type=int,
        help="Override the maximum characters per request.",
    )
    parser.add_argument(
        "--ignore-hidden",
        action="store_true",
        help="Leave hidden Word text untranslated.",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with an error when any batch failed, after saving the output.",
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Allow overwriting the output file if it already exists.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show detailed progress information.",
    )
    parser.add_argument(
        "--debug-provider",
        action="store_true",
        help="Log complete gateway requests and responses for troubleshooting.",
    )
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level, logging.WARNING), format=LOG_FORMAT)
    logging.getLogger().setLevel(getattr(logging, level, logging.WARNING))
    # Keep HTTP client chatter out of verbose runs.
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def sanitise_language_for_filename(language: str) -> str:
    """Generate a filesystem-friendly suffix from a language descriptor."""

    collapsed = re.sub(r"\s+", "-", language.strip())
    ascii_only = collapsed.encode("ascii", "ignore").decode("ascii")
    cleaned = re.sub(r"[^A-Za-z0-9\-]+", "", ascii_only)
    return cleaned or "translated"


def derive_output_path(input_path: pathlib.Path, language: str) -> pathlib.Path:
    addition = sanitise_language_for_filename(language)
    return input_path.with_name(f"{input_path.stem}_{addition}{input_path.suffix}")


def execute_translation(
    *,
    settings: DocbridgeSettings,
    input_file: str,
    output_file: str | None,
    target_language: str,
    source_language: str | None,
    gateway_name: str | None,
    model: str | None,
    max_items: int | None,
    max_request_size: int | None,
    ignore_hidden: bool,
    strict: bool,
    force_overwrite: bool,
    provider_debug: bool,
) -> tuple[int, TranslationSummary | None, str | None]:
    """Execute a translation run and return the exit code, summary, and message."""

    input_path = pathlib.Path(input_file).expanduser().resolve()
    output_path = (
        pathlib.Path(output_file).expanduser().resolve()
        if output_file
        else derive_output_path(input_path, target_language)
    )

    try:
        validate_paths(input_path, output_path, force_overwrite=force_overwrite)
    except (FileNotFoundError, DocbridgeError) as exc:
        return EXIT_FAILURE, None, str(exc)

    output_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        gateway = build_gateway(
            gateway_name or settings.DOCBRIDGE_GATEWAY,
            settings=settings,
            model=model,
            debug=provider_debug,
            max_items=max_items,
            max_request_size=max_request_size,
        )
        runner = TranslationRunner(
            input_path=input_path,
            output_path=output_path,
            gateway=gateway,
            target_language=target_language,
            source_language=source_language,
            ignore_hidden=ignore_hidden,
            strict=strict,
        )
        summary = runner.run()
    except (UnsupportedFileTypeError, GatewayConfigurationError, ExtractionError) as exc:
        return EXIT_FAILURE, None, str(exc)
    except OverwriteRefusedError as exc:
        return EXIT_FAILURE, None, str(exc)
    except TranslationAggregateError as exc:
        return EXIT_PARTIAL, None, f"Saved {output_path} with untranslated parts.\n{exc}"
    except TranslationCancelled as exc:
        return EXIT_INTERRUPTED, None, str(exc)
    except DocbridgeError as exc:
        return EXIT_FAILURE, None, str(exc)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED, None, "Translation interrupted by user."

    if not summary.complete:
        return EXIT_PARTIAL, summary, None
    return EXIT_OK, summary, None


def print_summary(summary: TranslationSummary) -> None:
    """Output a friendly report once processing completes."""

    heading = "Translation complete." if summary.complete else "Translation finished with errors."
    print(f"\n{heading}")
    print(f"  Input file:      {summary.input_path}")
    print(f"  Output file:     {summary.output_path}")
    print(f"  Document type:   {summary.document_type}")
    print(
        "  Fragments:       "
        f"{summary.translated_fragments} translated / {summary.total_fragments} total"
    )
    print(
        f"  Batches:         {summary.total_batches} "
        f"({summary.failed_batches} failed)"
    )
    print(f"  Gateway:         {summary.gateway_name}")
    if summary.source_language:
        print(f"  Source language: {summary.source_language}")
    print(f"  Target language: {summary.target_language}")
    print(f"  Elapsed time:    {summary.elapsed_seconds:.2f} seconds")
    if summary.error_messages:
        print("  Notes:")
        for message in summary.error_messages:
            print(f"    - {message}")


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        settings = get_settings()
    except GatewayConfigurationError as exc:
        print(exc)
        return EXIT_FAILURE

    provider_debug = bool(args.debug_provider or settings.DOCBRIDGE_PROVIDER_DEBUG)
    if provider_debug:
        level = "DEBUG"
    elif args.verbose:
        level = "INFO"
    else:
        level = settings.DOCBRIDGE_LOG_LEVEL
    configure_logging(level)

    exit_code, summary, message = execute_translation(
        settings=settings,
        input_file=args.input_file,
        output_file=args.output,
        target_language=args.target_language,
        source_language=args.source_language,
        gateway_name=args.gateway,
        model=args.model,
        max_items=args.max_items,
        max_request_size=args.max_request_size,
        ignore_hidden=args.ignore_hidden,
        strict=args.strict,
        force_overwrite=args.force,
        provider_debug=provider_debug,
    )

    if message:
        print(message)
    if summary:
        print_summary(summary)
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
