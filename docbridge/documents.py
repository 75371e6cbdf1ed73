"""Document adapters: locate text slots per region and commit fix-ups."""

from __future__ import annotations

import logging
import pathlib
import posixpath
import zipfile
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from lxml import etree

from .errors import DocbridgeError, ExtractionError, UnsupportedFileTypeError
from .structures import FragmentSequence, TextSetter

logger = logging.getLogger(__name__)

XML_SPACE = "{http://www.w3.org/XML/1998/namespace}space"
LEGACY_COMMENTS_RELTYPE = (
    "http://schemas.openxmlformats.org/officeDocument/2006/relationships/comments"
)
MODERN_COMMENTS_RELTYPE = (
    "http://schemas.microsoft.com/office/2018/10/relationships/comments"
)

SPREADSHEET_NS = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
PACKAGE_RELS_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
OFFICE_RELS_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
OFFICE_DOCUMENT_RELTYPE = f"{OFFICE_RELS_NS}/officeDocument"
WORKSHEET_RELTYPE = f"{OFFICE_RELS_NS}/worksheet"
SHARED_STRINGS_RELTYPE = f"{OFFICE_RELS_NS}/sharedStrings"
TABLE_RELTYPE = f"{OFFICE_RELS_NS}/table"

Slot = Tuple[Optional[str], TextSetter, str]


def _sml(tag: str) -> str:
    return f"{{{SPREADSHEET_NS}}}{tag}"


def _element_setter(element: Any, *, preserve_space: bool = False) -> TextSetter:
    """Return a setter writing into the text of an XML element."""

    def _setter(value: str) -> None:
        previous = element.text
        try:
            element.text = value
        except ValueError:
            # lxml clears the text before rejecting non-XML characters.
            element.text = previous
            raise
        if preserve_space and value and value != value.strip():
            element.set(XML_SPACE, "preserve")

    return _setter


class BaseDocumentHandler(ABC):
    """Common base class for document handlers.

    A handler exposes independent regions; each region yields its own
    ordered fragment sequence with positions starting at zero.
    """

    document_type = ""

    def __init__(self, source_path: pathlib.Path):
        self.source_path = source_path
        self.sequences: Dict[str, FragmentSequence] = {}

    @abstractmethod
    def regions(self) -> List[str]:
        """Return the region selectors available in this document."""

    @abstractmethod
    def _locate(self, region: str) -> Iterable[Slot]:
        """Yield ``(text, setter, location)`` for each text slot of a region."""

    @abstractmethod
    def save(self, destination: pathlib.Path) -> None:
        """Persist the translated document."""

    def extract_fragments(self, region: str) -> FragmentSequence:
        """Build the ordered fragment sequence for one region."""

        if region not in self.regions():
            raise ExtractionError(
                f"Unknown region '{region}' for {self.source_path.name}."
            )
        try:
            slots = list(self._locate(region))
        except DocbridgeError:
            raise
        except Exception as exc:
            raise ExtractionError(
                f"Could not read {region} of {self.source_path.name}: {exc}"
            ) from exc

        sequence = FragmentSequence.build(region, slots)
        self.sequences[region] = sequence
        logger.debug("%s: located %d fragments", region, len(sequence))
        return sequence

    def commit(self) -> None:
        """Reconcile derived structures once every region has been translated."""


class DocxDocumentHandler(BaseDocumentHandler):
    """Extracts and reinserts text for Word documents."""

    document_type = "docx"

    def __init__(self, source_path: pathlib.Path, *, ignore_hidden: bool = False):
        super().__init__(source_path)
        self.ignore_hidden = ignore_hidden
        try:
            from docx import Document

            self.document = Document(str(source_path))
        except Exception as exc:
            raise ExtractionError(
                f"Could not open Word document {source_path.name}: {exc}"
            ) from exc
        self._parts = self._collect_parts()

    def _collect_parts(self) -> Dict[str, Any]:
        from docx.opc.constants import RELATIONSHIP_TYPE as RT

        parts: Dict[str, Any] = {"body": self.document.element.body}
        related: List[Tuple[str, Any]] = []
        for rel in self.document.part.rels.values():
            if rel.is_external:
                continue
            if rel.reltype == RT.HEADER:
                kind = "header"
            elif rel.reltype == RT.FOOTER:
                kind = "footer"
            else:
                continue
            part = rel.target_part
            related.append((f"{kind}:{pathlib.PurePosixPath(str(part.partname)).stem}", part))
        # Headers before footers, each in part-name order.
        related.sort(key=lambda item: (not item[0].startswith("header"), item[0]))
        for name, part in related:
            parts[name] = part.element
        return parts

    def regions(self) -> List[str]:
        return list(self._parts)

    def save(self, destination: pathlib.Path) -> None:
        self.document.save(str(destination))

    def _is_hidden(self, text_element: Any) -> bool:
        from docx.oxml.ns import qn

        run = text_element.getparent()
        if run is None:
            return False
        properties = run.find(qn("w:rPr"))
        if properties is None:
            return False
        vanish = properties.find(qn("w:vanish"))
        if vanish is None:
            return False
        return vanish.get(qn("w:val")) not in {"0", "false", "off"}

    def _locate(self, region: str) -> Iterator[Slot]:
        from docx.oxml.ns import qn

        root = self._parts[region]
        label = region.replace(":", " ")
        count = 0
        for element in root.iter(qn("w:t")):
            text = element.text
            if not text:
                continue
            if self.ignore_hidden and self._is_hidden(element):
                continue
            count += 1
            yield (
                text,
                _element_setter(element, preserve_space=True),
                f"{label} text {count}",
            )


class PptxDocumentHandler(BaseDocumentHandler):
    """Extracts and reinserts text for PowerPoint presentations."""

    document_type = "pptx"

    def __init__(self, source_path: pathlib.Path):
        super().__init__(source_path)
        try:
            from pptx import Presentation

            self.presentation = Presentation(str(source_path))
        except Exception as exc:
            raise ExtractionError(
                f"Could not open PowerPoint presentation {source_path.name}: {exc}"
            ) from exc
        self._raw_parts: List[Tuple[Any, Any]] = []

    def regions(self) -> List[str]:
        return ["slides", "notes", "comments"]

    def save(self, destination: pathlib.Path) -> None:
        self.presentation.save(str(destination))

    def commit(self) -> None:
        """Serialise comment parts that python-pptx only holds as raw bytes."""

        for part, root in self._raw_parts:
            part._blob = etree.tostring(
                root, xml_declaration=True, encoding="UTF-8", standalone=True
            )
        if self._raw_parts:
            logger.debug("Rewrote %d comment parts", len(self._raw_parts))

    def _locate(self, region: str) -> Iterator[Slot]:
        if region == "slides":
            for s_idx, slide in enumerate(self.presentation.slides):
                yield from self._locate_runs(slide.element, f"Slide {s_idx + 1}")
        elif region == "notes":
            for s_idx, slide in enumerate(self.presentation.slides):
                if not slide.has_notes_slide:
                    continue
                yield from self._locate_runs(
                    slide.notes_slide.element, f"Slide {s_idx + 1} notes"
                )
        else:
            for s_idx, slide in enumerate(self.presentation.slides):
                yield from self._locate_comments(slide, f"Slide {s_idx + 1} comment")

    def _locate_runs(self, element: Any, location: str) -> Iterator[Slot]:
        from pptx.oxml.ns import qn

        for paragraph in element.iter(qn("a:p")):
            for run in paragraph.findall(qn("a:r")):
                text_element = run.find(qn("a:t"))
                if text_element is None or not text_element.text:
                    continue
                yield text_element.text, _element_setter(text_element), location

    def _locate_comments(self, slide: Any, location: str) -> Iterator[Slot]:
        from pptx.oxml.ns import qn

        for rel in slide.part.rels.values():
            if rel.is_external:
                continue
            if rel.reltype == LEGACY_COMMENTS_RELTYPE:
                root = self._comment_root(rel.target_part)
                for comment in root.iter(qn("p:cm")):
                    text_element = comment.find(qn("p:text"))
                    if text_element is None:
                        continue
                    yield text_element.text, _element_setter(text_element), location
            elif rel.reltype == MODERN_COMMENTS_RELTYPE:
                root = self._comment_root(rel.target_part)
                yield from self._locate_runs(root, location)

    def _comment_root(self, part: Any) -> Any:
        for known_part, root in self._raw_parts:
            if known_part is part:
                return root
        element = getattr(part, "_element", None)
        if element is not None:
            return element
        root = etree.fromstring(part.blob)
        self._raw_parts.append((part, root))
        return root


class XlsxDocumentHandler(BaseDocumentHandler):
    """Extracts and reinserts text for Excel workbooks.

    The package is edited part by part: only the shared string table, inline
    string cells, comment parts and table definitions are parsed, and every
    other entry (styles, drawings, media, charts) is copied through as is.
    """

    document_type = "xlsx"

    def __init__(self, source_path: pathlib.Path):
        super().__init__(source_path)
        self._entries: List[zipfile.ZipInfo] = []
        self._blobs: Dict[str, bytes] = {}
        self._roots: Dict[str, Any] = {}
        self._dirty: Set[str] = set()
        self._shared_positions: Dict[int, List[int]] = {}
        self._inline_positions: Dict[Tuple[str, str], List[int]] = {}
        try:
            with zipfile.ZipFile(str(source_path)) as archive:
                for info in archive.infolist():
                    self._entries.append(info)
                    self._blobs[info.filename] = archive.read(info.filename)
            self._workbook_path = self._main_part()
            self._sheets = self._load_sheets()
        except DocbridgeError:
            raise
        except Exception as exc:
            raise ExtractionError(
                f"Could not open Excel workbook {source_path.name}: {exc}"
            ) from exc

    def regions(self) -> List[str]:
        return ["cells", "comments"]

    def _xml(self, path: str) -> Any:
        root = self._roots.get(path)
        if root is None:
            root = etree.fromstring(self._blobs[path])
            self._roots[path] = root
        return root

    def _relationships(self, part: str) -> List[Tuple[str, str, str]]:
        """Return ``(type, target path, id)`` for the internal relationships of a part."""

        folder, name = posixpath.split(part)
        rels_path = posixpath.join(folder, "_rels", f"{name}.rels")
        if rels_path not in self._blobs:
            return []
        related = []
        for rel in self._xml(rels_path).iter(f"{{{PACKAGE_RELS_NS}}}Relationship"):
            if rel.get("TargetMode") == "External":
                continue
            target = rel.get("Target", "")
            if target.startswith("/"):
                resolved = target.lstrip("/")
            else:
                resolved = posixpath.normpath(posixpath.join(folder, target))
            related.append((rel.get("Type", ""), resolved, rel.get("Id", "")))
        return related

    def _related(self, part: str, reltype: str) -> List[str]:
        return [
            path
            for kind, path, _ in self._relationships(part)
            if kind == reltype and path in self._blobs
        ]

    def _main_part(self) -> str:
        for path in self._related("", OFFICE_DOCUMENT_RELTYPE):
            return path
        raise ExtractionError(f"{self.source_path.name} has no workbook part.")

    def _load_sheets(self) -> List[Tuple[str, str]]:
        targets = {
            rid: path
            for kind, path, rid in self._relationships(self._workbook_path)
            if kind == WORKSHEET_RELTYPE and path in self._blobs
        }
        sheets = []
        for sheet in self._xml(self._workbook_path).iter(_sml("sheet")):
            path = targets.get(sheet.get(f"{{{OFFICE_RELS_NS}}}id", ""))
            if path is not None:
                sheets.append((sheet.get("name", path), path))
        return sheets

    def _part_setter(self, path: str, element: Any) -> TextSetter:
        write = _element_setter(element, preserve_space=True)

        def _setter(value: str) -> None:
            write(value)
            self._dirty.add(path)

        return _setter

    def _string_runs(self, container: Any) -> List[Any]:
        """Text elements of a string item: its plain ``t`` or its rich-text runs."""

        plain = container.find(_sml("t"))
        if plain is not None and plain.text:
            return [plain]
        runs = []
        for run in container.findall(_sml("r")):
            text_element = run.find(_sml("t"))
            if text_element is not None and text_element.text:
                runs.append(text_element)
        return runs

    def _locate(self, region: str) -> Iterator[Slot]:
        if region == "cells":
            yield from self._locate_cells()
        else:
            yield from self._locate_comments()

    def _locate_cells(self) -> Iterator[Slot]:
        self._shared_positions = {}
        self._inline_positions = {}
        position = 0
        for path in self._related(self._workbook_path, SHARED_STRINGS_RELTYPE):
            for si_index, item in enumerate(self._xml(path).findall(_sml("si"))):
                for text_element in self._string_runs(item):
                    self._shared_positions.setdefault(si_index, []).append(position)
                    position += 1
                    yield (
                        text_element.text,
                        self._part_setter(path, text_element),
                        f"shared string {si_index + 1}",
                    )
        for title, path in self._sheets:
            for cell in self._xml(path).iter(_sml("c")):
                if cell.get("t") != "inlineStr":
                    continue
                inline = cell.find(_sml("is"))
                if inline is None:
                    continue
                reference = cell.get("r", "")
                for text_element in self._string_runs(inline):
                    self._inline_positions.setdefault((path, reference), []).append(position)
                    position += 1
                    yield (
                        text_element.text,
                        self._part_setter(path, text_element),
                        f"{title}!{reference}",
                    )

    def _locate_comments(self) -> Iterator[Slot]:
        for title, path in self._sheets:
            for comments_path in self._related(path, LEGACY_COMMENTS_RELTYPE):
                for comment in self._xml(comments_path).iter(_sml("comment")):
                    text = comment.find(_sml("text"))
                    if text is None:
                        continue
                    location = f"{title}!{comment.get('ref', '')} comment"
                    for text_element in self._string_runs(text):
                        yield (
                            text_element.text,
                            self._part_setter(comments_path, text_element),
                            location,
                        )

    def _header_name(self, sheet_path: str, coordinate: str) -> Optional[str]:
        cells = self.sequences.get("cells")
        if cells is None:
            return None
        positions: List[int] = []
        for cell in self._xml(sheet_path).iter(_sml("c")):
            if cell.get("r") != coordinate:
                continue
            if cell.get("t") == "s":
                value = cell.find(_sml("v"))
                if value is not None and value.text and value.text.strip().isdigit():
                    positions = self._shared_positions.get(int(value.text), [])
            elif cell.get("t") == "inlineStr":
                positions = self._inline_positions.get((sheet_path, coordinate), [])
            break
        handles = [cells[position] for position in positions]
        if not handles or not all(handle.translated for handle in handles):
            return None
        return "".join(handle.text or "" for handle in handles) or None

    def commit(self) -> None:
        """Refresh table column names from the translated header cells."""

        from openpyxl.utils import get_column_letter, range_boundaries

        for _, sheet_path in self._sheets:
            for table_path in self._related(sheet_path, TABLE_RELTYPE):
                table = self._xml(table_path)
                if table.get("headerRowCount", "1") == "0" or not table.get("ref"):
                    continue
                min_col, min_row, _, _ = range_boundaries(table.get("ref"))
                columns = table.find(_sml("tableColumns"))
                if columns is None:
                    continue
                for offset, column in enumerate(columns.findall(_sml("tableColumn"))):
                    coordinate = f"{get_column_letter(min_col + offset)}{min_row}"
                    name = self._header_name(sheet_path, coordinate)
                    if name is not None and name != column.get("name"):
                        column.set("name", name)
                        self._dirty.add(table_path)

    def save(self, destination: pathlib.Path) -> None:
        with zipfile.ZipFile(str(destination), "w", zipfile.ZIP_DEFLATED) as archive:
            for info in self._entries:
                if info.filename in self._dirty:
                    data = etree.tostring(
                        self._roots[info.filename],
                        xml_declaration=True,
                        encoding="UTF-8",
                        standalone=True,
                    )
                else:
                    data = self._blobs[info.filename]
                archive.writestr(info, data)
        logger.debug("Rewrote %d workbook parts", len(self._dirty))


HANDLERS = {
    ".docx": DocxDocumentHandler,
    ".pptx": PptxDocumentHandler,
    ".xlsx": XlsxDocumentHandler,
}

MIME_TYPES = {
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": ".pptx",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
}


def _open_handler(suffix: str, path: pathlib.Path, ignore_hidden: bool) -> BaseDocumentHandler:
    if suffix == ".docx":
        return DocxDocumentHandler(path, ignore_hidden=ignore_hidden)
    return HANDLERS[suffix](path)


def detect_handler(
    path: pathlib.Path,
    *,
    ignore_hidden: bool = False,
) -> Tuple[str, BaseDocumentHandler]:
    """Select an appropriate handler for the provided file."""

    suffix = path.suffix.lower()
    if suffix not in HANDLERS:
        raise UnsupportedFileTypeError(
            "This file type isn't supported. Please use .docx, .pptx or .xlsx."
        )
    handler = _open_handler(suffix, path, ignore_hidden)
    return handler.document_type, handler


def handler_for_mime_type(
    mime_type: str,
    path: pathlib.Path,
    *,
    ignore_hidden: bool = False,
) -> Tuple[str, BaseDocumentHandler]:
    """Select a handler from a MIME type, ignoring the file name."""

    suffix = MIME_TYPES.get(mime_type.split(";")[0].strip().lower())
    if suffix is None:
        raise UnsupportedFileTypeError(f"Unsupported MIME type '{mime_type}'.")
    handler = _open_handler(suffix, path, ignore_hidden)
    return handler.document_type, handler
