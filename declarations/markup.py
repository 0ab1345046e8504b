"""
Parse the HTML subset produced by the template editor into styled runs.

Supported: <p>, <div> (paragraphs), <b>/<strong>, <i>/<em>, <u>, <br>.
Other tags are ignored but their text is kept.
"""
from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import List


@dataclass(frozen=True)
class Style:
    bold: bool = False
    italic: bool = False
    underline: bool = False


@dataclass
class Run:
    text: str
    style: Style = Style()


@dataclass
class Paragraph:
    # A paragraph is split into segments by <br>; each segment starts a new line.
    segments: List[List[Run]] = field(default_factory=lambda: [[]])

    @property
    def text(self) -> str:
        return "\n".join("".join(r.text for r in seg) for seg in self.segments)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


_BLOCK = {"p", "div"}
_STYLE_TAGS = {"b": "bold", "strong": "bold", "i": "italic", "em": "italic", "u": "underline"}
_WS = re.compile(r"\s+")


class _MarkupParser(HTMLParser):
    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.paragraphs: List[Paragraph] = []
        self._current: Paragraph | None = None
        self._depth = {"bold": 0, "italic": 0, "underline": 0}

    def _style(self) -> Style:
        return Style(
            bold=self._depth["bold"] > 0,
            italic=self._depth["italic"] > 0,
            underline=self._depth["underline"] > 0,
        )

    def _paragraph(self) -> Paragraph:
        if self._current is None:
            self._current = Paragraph()
        return self._current

    def _close_paragraph(self) -> None:
        if self._current is not None:
            self.paragraphs.append(self._current)
            self._current = None

    def handle_starttag(self, tag, attrs):
        if tag in _BLOCK:
            self._close_paragraph()
            self._paragraph()
        elif tag in _STYLE_TAGS:
            self._depth[_STYLE_TAGS[tag]] += 1
        elif tag == "br":
            self._paragraph().segments.append([])

    def handle_startendtag(self, tag, attrs):
        if tag == "br":
            self._paragraph().segments.append([])

    def handle_endtag(self, tag):
        if tag in _BLOCK:
            self._close_paragraph()
        elif tag in _STYLE_TAGS:
            key = _STYLE_TAGS[tag]
            self._depth[key] = max(0, self._depth[key] - 1)

    def handle_data(self, data):
        text = _WS.sub(" ", data)
        if not text:
            return
        if self._current is None and not text.strip():
            # whitespace between block tags
            return
        segment = self._paragraph().segments[-1]
        style = self._style()
        if segment and segment[-1].style == style:
            segment[-1].text += text
        else:
            segment.append(Run(text, style))

    def close(self):
        super().close()
        self._close_paragraph()


def plain_text_to_html(text: str) -> str:
    parts = re.split(r"\n\s*\n", text.replace("\r\n", "\n").strip())
    return "".join(
        "<p>" + html.escape(part.strip(), quote=False).replace("\n", "<br>") + "</p>"
        for part in parts
    )


def parse_markup(source: str) -> List[Paragraph]:
    """HTML subset (or plain text with blank-line paragraphs) -> paragraphs."""
    source = source or ""
    if not re.search(r"<[a-zA-Z/][^>]*>", source):
        source = plain_text_to_html(source)
    parser = _MarkupParser()
    parser.feed(source)
    parser.close()
    return parser.paragraphs
