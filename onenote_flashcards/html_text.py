"""
Plain-text extraction from OneNote page HTML.

Output keeps just enough structure for the flashcard prompt:
### Heading
- list item
Paragraph text
"""

import logging
import re
from html.parser import HTMLParser

logger = logging.getLogger(__name__)

SKIPPED_TAGS = {"style", "script", "head", "title", "template"}
HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
BLOCK_TAGS = HEADING_TAGS | {"p", "li", "div", "ul", "ol", "table", "tr", "blockquote", "pre"}
CELL_TAGS = {"td", "th"}


def _normalise_space(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


class _OneNoteTextParser(HTMLParser):
    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.lines: list[str] = []
        self._stack: list[tuple[str, list[str]]] = []
        self._skip_depth = 0

    def _flush_top(self) -> None:
        if not self._stack:
            return
        tag, parts = self._stack[-1]
        text = _normalise_space("".join(parts))
        parts.clear()
        if not text:
            return
        if tag in HEADING_TAGS:
            self.lines.append(f"### {text}\n\n")
        elif tag == "li":
            self.lines.append(f"- {text}\n")
        else:
            self.lines.append(f"{text}\n\n")

    def handle_starttag(self, tag, attrs):
        if tag in SKIPPED_TAGS:
            self._skip_depth += 1
            return
        if tag == "br":
            self.handle_data(" ")
        elif tag in CELL_TAGS:
            self.handle_data(" ")
        elif tag in BLOCK_TAGS:
            # Text seen so far in the enclosing block comes first
            self._flush_top()
            self._stack.append((tag, []))

    def handle_endtag(self, tag):
        if tag in SKIPPED_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
            return
        if tag not in BLOCK_TAGS:
            return
        # Close the nearest matching block, flushing anything left open inside it
        for position in range(len(self._stack) - 1, -1, -1):
            if self._stack[position][0] == tag:
                while len(self._stack) > position:
                    self._flush_top()
                    self._stack.pop()
                break

    def handle_data(self, data):
        if self._skip_depth:
            return
        if not self._stack:
            self._stack.append(("p", []))
        self._stack[-1][1].append(data)

    def close(self):
        super().close()
        while self._stack:
            self._flush_top()
            self._stack.pop()


def strip_tags(html: str) -> str:
    """Crude fallback: remove every tag and collapse whitespace."""
    return _normalise_space(re.sub(r"<[^>]*>", " ", html))


def extract_text_from_onenote_html(html: str) -> str:
    """
    Extract structured plain text from OneNote page HTML.

    Args:
        html: Page content as returned by Graph

    Returns:
        Text with headings as ``### text``, list items as ``- text`` and
        other blocks as paragraphs
    """
    parser = _OneNoteTextParser()
    try:
        parser.feed(html)
        parser.close()
    except Exception:
        logger.exception("Error extracting text from HTML, falling back to tag stripping")
        return strip_tags(html)
    return "".join(parser.lines).strip()


def page_to_text(content: str) -> str:
    """Convert page content to prompt text; non-HTML content is used as is."""
    if "<html" in content.lower():
        return extract_text_from_onenote_html(content)
    return content


def truncate_words(text: str, max_words: int) -> str:
    """Keep at most ``max_words`` whitespace-separated words."""
    words = text.split()
    if len(words) <= max_words:
        return text
    logger.info("Note content too large (%d words), truncating to %d", len(words), max_words)
    return " ".join(words[:max_words])
