"""
Shared fixtures: in-memory fragment sequences, scripted gateways and
small Office documents generated on the fly.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

import pytest

from docbridge.configuration import clear_settings_cache
from docbridge.errors import TranslationGatewayError
from docbridge.gateways import TranslationGateway
from docbridge.structures import FragmentSequence


class RecordingGateway(TranslationGateway):
    """Gateway appending a suffix and remembering every remote call."""

    name = "recording"

    def __init__(self, *, suffix: str = "!", fail_on: Optional[set] = None, **limits):
        super().__init__(**limits)
        self.suffix = suffix
        self.fail_on = fail_on or set()
        self.calls: List[List[str]] = []

    def _translate_texts(self, texts, *, target_language, source_language):
        self.calls.append(list(texts))
        for text in texts:
            if text in self.fail_on:
                raise TranslationGatewayError(f"backend rejected {text!r}")
        return [text + self.suffix for text in texts]


class MappingGateway(TranslationGateway):
    """Gateway translating through a fixed dictionary."""

    name = "mapping"

    def __init__(self, mapping: Dict[str, str], **limits):
        super().__init__(**limits)
        self.mapping = mapping
        self.calls: List[List[str]] = []

    def _translate_texts(self, texts, *, target_language, source_language):
        self.calls.append(list(texts))
        return [self.mapping[text] for text in texts]


def make_fragments(values, region: str = "body"):
    """Return a fragment sequence over a plain list, plus that list."""

    store = list(values)

    def setter_for(position):
        def _setter(value):
            store[position] = value

        return _setter

    sequence = FragmentSequence.build(
        region,
        ((value, setter_for(idx), f"{region} #{idx}") for idx, value in enumerate(values)),
    )
    return sequence, store


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path_factory, monkeypatch):
    """Keep user configuration files and cached settings out of tests."""

    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    for name in (
        "DOCBRIDGE_GATEWAY",
        "DOCBRIDGE_MAX_ITEMS",
        "DOCBRIDGE_MAX_REQUEST_SIZE",
        "DOCBRIDGE_LOG_LEVEL",
        "DOCBRIDGE_PROVIDER_DEBUG",
        "LLM_PROVIDER",
        "OPENAI_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def recording_gateway():
    return RecordingGateway(max_items=3, max_request_size=1000)


@pytest.fixture
def sample_docx(tmp_path) -> Path:
    from docx import Document

    document = Document()
    document.add_paragraph("Hello world")
    paragraph = document.add_paragraph("First ")
    paragraph.add_run("second")
    hidden = document.add_paragraph().add_run("Secret")
    hidden.font.hidden = True
    table = document.add_table(rows=1, cols=2)
    table.cell(0, 0).text = "Cell A"
    table.cell(0, 1).text = "Cell B"
    section = document.sections[0]
    section.header.paragraphs[0].text = "Header text"
    section.footer.paragraphs[0].text = "Footer text"

    path = tmp_path / "sample.docx"
    document.save(str(path))
    return path


@pytest.fixture
def sample_pptx(tmp_path) -> Path:
    from pptx import Presentation
    from pptx.util import Inches

    presentation = Presentation()
    slide = presentation.slides.add_slide(presentation.slide_layouts[6])
    box = slide.shapes.add_textbox(Inches(1), Inches(1), Inches(4), Inches(1))
    box.text_frame.text = "Hello slide"
    box.text_frame.add_paragraph().text = "Second line"
    slide.notes_slide.notes_text_frame.text = "Speaker note"

    path = tmp_path / "sample.pptx"
    presentation.save(str(path))
    return path


@pytest.fixture
def sample_xlsx(tmp_path) -> Path:
    from openpyxl import Workbook
    from openpyxl.comments import Comment
    from openpyxl.worksheet.table import Table

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Data"
    sheet.append(["Name", "City"])
    sheet.append(["Alice", "Paris"])
    sheet.append(["Bob", 42])
    sheet["A2"].comment = Comment("Check spelling", "Reviewer")
    sheet.add_table(Table(displayName="People", ref="A1:B3"))

    path = tmp_path / "sample.xlsx"
    workbook.save(str(path))
    return path
