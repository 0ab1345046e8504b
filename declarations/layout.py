"""
Paragraph layout: word wrap, first-line indent, 1.5 line spacing, full
justification and pagination.

Layout is independent of the PDF backend: widths come from a measure
callback, so tests can use a fixed-width fake font.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .markup import Paragraph, Run, Style

# (text, style, font_size) -> width in points
Measure = Callable[[str, Style, float], float]


@dataclass
class Piece:
    text: str
    style: Style
    width: float
    x: float = 0.0


@dataclass
class Word:
    pieces: List[Piece]

    @property
    def width(self) -> float:
        return sum(p.width for p in self.pieces)

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.pieces)


@dataclass
class Line:
    pieces: List[Piece]
    y: float  # baseline
    justified: bool = False

    @property
    def text(self) -> str:
        out, last_end = "", None
        for p in self.pieces:
            if last_end is not None and p.x - last_end > 0.01:
                out += " "
            out += p.text
            last_end = p.x + p.width
        return out


@dataclass
class Page:
    lines: List[Line] = field(default_factory=list)


@dataclass
class LayoutResult:
    pages: List[Page]
    # baseline of the last line written, on the last page
    end_y: float


@dataclass
class BodyFrame:
    left: float
    width: float
    top: float  # top of the body on the first page
    bottom: float  # lowest baseline allowed on any page
    next_top: Optional[float] = None  # top of the body on continuation pages
    font_size: float = 12.5
    line_spacing: float = 1.5
    indent: float = 35.0
    paragraph_gap: float = 0.0

    @property
    def line_height(self) -> float:
        return self.font_size * self.line_spacing


def split_words(runs: List[Run], measure: Measure, size: float) -> List[Word]:
    """Split styled runs on whitespace; a word may mix styles ("<b>Ana</b>,")."""
    words: List[Word] = []
    current: List[Piece] = []
    for run in runs:
        chunks = run.text.split(" ")
        for i, chunk in enumerate(chunks):
            if i > 0 and current:
                words.append(Word(current))
                current = []
            if chunk:
                current.append(Piece(chunk, run.style, measure(chunk, run.style, size)))
    if current:
        words.append(Word(current))
    return words


def wrap_words(words: List[Word], first_width: float, width: float, space: float) -> List[List[Word]]:
    """Greedy wrap. A word wider than the line gets a line of its own."""
    lines: List[List[Word]] = []
    line: List[Word] = []
    used = 0.0
    limit = first_width
    for word in words:
        needed = word.width if not line else used + space + word.width
        if line and needed > limit:
            lines.append(line)
            line, used, limit = [word], word.width, width
        else:
            line.append(word)
            used = needed
    if line:
        lines.append(line)
    return lines


def place_line(words: List[Word], x0: float, avail: float, space: float, justify: bool) -> List[Piece]:
    gap = space
    if justify and len(words) > 1:
        natural = sum(w.width for w in words)
        gap = (avail - natural) / (len(words) - 1)
        if gap < space:
            gap = space
    pieces: List[Piece] = []
    x = x0
    for i, word in enumerate(words):
        if i:
            x += gap
        for p in word.pieces:
            pieces.append(Piece(p.text, p.style, p.width, x))
            x += p.width
    return pieces


def layout_paragraphs(
    paragraphs: List[Paragraph], measure: Measure, frame: BodyFrame
) -> LayoutResult:
    """
    Lay paragraphs out top to bottom. Every line is justified except the
    last line of a paragraph and a line ended by <br>. The first line of each
    paragraph is indented.
    """
    size = frame.font_size
    space = measure(" ", Style(), size)
    pages = [Page()]
    y = frame.top
    last_baseline = frame.top

    for para in paragraphs:
        if para.is_empty:
            y += frame.line_height
            continue
        for seg_index, segment in enumerate(para.segments):
            words = split_words(segment, measure, size)
            if not words:
                y += frame.line_height
                continue
            indent = frame.indent if seg_index == 0 else 0.0
            wrapped = wrap_words(words, frame.width - indent, frame.width, space)
            for i, line_words in enumerate(wrapped):
                baseline = y + size
                if baseline > frame.bottom and pages[-1].lines:
                    pages.append(Page())
                    y = frame.next_top if frame.next_top is not None else frame.top
                    baseline = y + size
                x0 = frame.left + (indent if i == 0 else 0.0)
                avail = frame.width - (indent if i == 0 else 0.0)
                justify = i < len(wrapped) - 1
                pieces = place_line(line_words, x0, avail, space, justify)
                pages[-1].lines.append(Line(pieces, baseline, justify))
                last_baseline = baseline
                y += frame.line_height
        y += frame.paragraph_gap

    return LayoutResult(pages=pages, end_y=last_baseline)
