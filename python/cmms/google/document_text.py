"""Plain-text extraction from Google Docs document bodies.

Google Docs addresses content with UTF-16 code unit indices that start at 1
and also count non-text elements (inline images, section breaks). Segment
offsets are code point offsets into the extracted plain text, so every
index crossing the API boundary goes through a TextIndexMap.

Text is collected in document order from paragraph text runs, table cells
(row by row, cell by cell) and tables of contents.
"""

from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Any


def utf16_length(text: str) -> int:
    """Number of UTF-16 code units needed to encode text."""
    return sum(2 if ord(ch) > 0xFFFF else 1 for ch in text)


@dataclass(frozen=True)
class TextRun:
    """A contiguous piece of extracted text and where it lives in the doc."""

    doc_start: int
    text_start: int
    content: str

    @property
    def doc_end(self) -> int:
        return self.doc_start + utf16_length(self.content)

    @property
    def text_end(self) -> int:
        return self.text_start + len(self.content)


@dataclass
class TextIndexMap:
    """Bidirectional mapping between doc indices and plain-text offsets."""

    runs: list[TextRun] = field(default_factory=list)

    @property
    def text_length(self) -> int:
        return self.runs[-1].text_end if self.runs else 0

    def to_text_offset(self, doc_index: int) -> int:
        """Convert a Docs index to a plain-text offset.

        Indices that fall on non-text elements snap forward to the next
        character of text.
        """
        if not self.runs:
            return 0
        pos = bisect_right([r.doc_start for r in self.runs], doc_index) - 1
        if pos < 0:
            return 0
        run = self.runs[pos]
        if doc_index >= run.doc_end:
            # In a gap after this run (or past the end of the body)
            return run.text_end
        units = doc_index - run.doc_start
        consumed = 0
        for i, ch in enumerate(run.content):
            if consumed >= units:
                return run.text_start + i
            consumed += 2 if ord(ch) > 0xFFFF else 1
        return run.text_end

    def to_doc_index(self, text_offset: int) -> int:
        """Convert a plain-text offset to a Docs index."""
        if not self.runs:
            return 1
        pos = bisect_right([r.text_start for r in self.runs], text_offset) - 1
        if pos < 0:
            return self.runs[0].doc_start
        run = self.runs[pos]
        if text_offset >= run.text_end:
            return run.doc_end
        return run.doc_start + utf16_length(run.content[: text_offset - run.text_start])


def _collect(elements: list[dict[str, Any]], runs: list[TextRun], parts: list[str]) -> None:
    for element in elements:
        if "paragraph" in element:
            for piece in element["paragraph"].get("elements", []):
                text_run = piece.get("textRun")
                if not text_run:
                    continue
                content = text_run.get("content", "")
                if not content:
                    continue
                text_start = runs[-1].text_end if runs else 0
                runs.append(
                    TextRun(
                        doc_start=piece.get("startIndex", 0),
                        text_start=text_start,
                        content=content,
                    )
                )
                parts.append(content)
        elif "table" in element:
            for row in element["table"].get("tableRows", []):
                for cell in row.get("tableCells", []):
                    _collect(cell.get("content", []), runs, parts)
        elif "tableOfContents" in element:
            _collect(element["tableOfContents"].get("content", []), runs, parts)


def extract_document_text(body: dict[str, Any] | None) -> tuple[str, TextIndexMap]:
    """Extract plain text and an index map from a Docs ``body`` object.

    Args:
        body: The ``body`` field of a Docs API document resource.

    Returns:
        Tuple of (plain text, TextIndexMap).
    """
    runs: list[TextRun] = []
    parts: list[str] = []
    _collect((body or {}).get("content", []), runs, parts)
    return "".join(parts), TextIndexMap(runs=runs)
