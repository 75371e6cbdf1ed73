"""End-to-end tests for TranslationRunner and translate_document."""

import pytest

from conftest import RecordingGateway
from docbridge.errors import (
    ExtractionError,
    OverwriteRefusedError,
    TranslationAggregateError,
    TranslationCancelled,
    UnsupportedFileTypeError,
)
from docbridge.translator import TranslationRunner, translate_document, validate_paths


class TestTranslateDocument:
    def test_docx_round_trip(self, sample_docx, tmp_path):
        from docx import Document

        gateway = RecordingGateway(max_items=25, max_request_size=5000)
        output = tmp_path / "sample_es.docx"

        summary = translate_document(sample_docx, output, gateway, target_language="es")

        assert output.exists()
        assert summary.complete
        assert summary.document_type == "docx"
        assert summary.gateway_name == "recording"
        assert summary.total_fragments == summary.translated_fragments
        assert [report.region for report in summary.regions][0] == "body"
        assert Document(str(output)).paragraphs[0].text == "Hello world!"

    def test_regions_are_sent_separately(self, sample_pptx, tmp_path):
        gateway = RecordingGateway(max_items=25, max_request_size=5000)

        translate_document(sample_pptx, tmp_path / "out.pptx", gateway, target_language="es")

        assert gateway.calls[0] == ["Hello slide", "Second line"]
        assert any("Speaker note" in call for call in gateway.calls[1:])

    def test_partial_failure_still_saves(self, sample_xlsx, tmp_path):
        from openpyxl import load_workbook

        gateway = RecordingGateway(max_items=2, max_request_size=1000, fail_on={"Alice"})
        output = tmp_path / "out.xlsx"

        summary = translate_document(sample_xlsx, output, gateway, target_language="fr")

        assert not summary.complete
        assert summary.failed_batches == 1
        assert summary.errors.failures[0].region == "cells"
        assert "Alice" in summary.error_messages[0]
        sheet = load_workbook(str(output))["Data"]
        assert sheet["A1"].value == "Name!"
        assert sheet["A2"].value == "Alice"
        assert sheet["B2"].value == "Paris"
        assert sheet["A3"].value == "Bob!"

    def test_strict_raises_after_saving(self, sample_docx, tmp_path):
        gateway = RecordingGateway(max_items=1, max_request_size=1000, fail_on={"Cell A"})
        output = tmp_path / "out.docx"

        with pytest.raises(TranslationAggregateError) as excinfo:
            translate_document(sample_docx, output, gateway, target_language="es", strict=True)

        assert output.exists()
        assert len(excinfo.value.failures) == 1

    def test_cancelled_run_is_not_saved(self, sample_docx, tmp_path):
        output = tmp_path / "out.docx"

        with pytest.raises(TranslationCancelled):
            translate_document(
                sample_docx,
                output,
                RecordingGateway(max_items=1, max_request_size=1000),
                target_language="es",
                should_cancel=lambda: True,
            )

        assert not output.exists()

    def test_extraction_failure_makes_no_remote_call(self, tmp_path):
        broken = tmp_path / "broken.pptx"
        broken.write_bytes(b"garbage")
        gateway = RecordingGateway()

        with pytest.raises(ExtractionError):
            translate_document(broken, tmp_path / "out.pptx", gateway, target_language="es")

        assert gateway.calls == []

    def test_unsupported_type(self, tmp_path):
        source = tmp_path / "notes.txt"
        source.write_text("hello", encoding="utf-8")
        with pytest.raises(UnsupportedFileTypeError):
            translate_document(source, tmp_path / "out.txt", RecordingGateway(), target_language="es")

    def test_region_callback(self, sample_docx, tmp_path):
        seen = []
        runner = TranslationRunner(
            input_path=sample_docx,
            output_path=tmp_path / "out.docx",
            gateway=RecordingGateway(max_items=25, max_request_size=5000),
            target_language="es",
            on_region=lambda report: seen.append(report.region),
        )

        summary = runner.run()

        assert seen == [report.region for report in summary.regions]
        assert seen[0] == "body"


class TestValidatePaths:
    def test_missing_input(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            validate_paths(tmp_path / "nope.docx", tmp_path / "out.docx", False)

    def test_same_path_is_refused(self, sample_docx):
        with pytest.raises(OverwriteRefusedError):
            validate_paths(sample_docx, sample_docx, True)

    def test_existing_output_needs_force(self, sample_docx, tmp_path):
        output = tmp_path / "exists.docx"
        output.write_bytes(b"")
        with pytest.raises(OverwriteRefusedError):
            validate_paths(sample_docx, output, False)
        validate_paths(sample_docx, output, True)
