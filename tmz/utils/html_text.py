"""Convert chat message HTML to plain text for previews, bodies and search."""

import re
from html.parser import HTMLParser

_BREAK_TAGS = frozenset({"p", "div", "li"})
_SPACE_RUN = re.compile(r"[ \t]+")


class _FileInfoParser(HTMLParser):
    """Pull the file name and size out of a URIObject attachment."""

    def __init__(self) -> None:
        super().__init__()
        self.name: str | None = None
        self.size: str | None = None

    def handle_starttag(self, tag: str, attrs) -> None:  # type: ignore[override]
        values = dict(attrs)
        if tag == "originalname" and self.name is None and values.get("v"):
            self.name = values["v"]
        elif tag == "meta" and self.name is None and values.get("originalname"):
            self.name = values["originalname"]
        elif tag == "filesize" and self.size is None and values.get("v"):
            self.size = values["v"]


class _TextParser(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._quote_depth = 0
        self.chunks: list[str] = []

    def handle_starttag(self, tag: str, attrs) -> None:  # type: ignore[override]
        if tag == "blockquote":
            self._quote_depth += 1
        elif tag == "br" and not self._quote_depth:
            self.chunks.append("\n")

    def handle_endtag(self, tag: str) -> None:  # type: ignore[override]
        if tag == "blockquote":
            self._quote_depth = max(0, self._quote_depth - 1)
        elif tag in _BREAK_TAGS and not self._quote_depth:
            self.chunks.append("\n")

    def handle_data(self, data: str) -> None:  # type: ignore[override]
        if not self._quote_depth:
            self.chunks.append(data)


def _file_placeholder(html: str) -> str | None:
    parser = _FileInfoParser()
    parser.feed(html)
    parser.close()
    if parser.name is None:
        return None
    if parser.size:
        return f"[file: {parser.name} ({parser.size} bytes)]"
    return f"[file: {parser.name}]"


def strip_html(html: str) -> str:
    """Render message HTML as plain text.

    File attachments (URIObject) collapse to a "[file: name (N bytes)]"
    placeholder. Quoted replies (blockquote) are dropped. Line breaks,
    paragraphs, divs and list items become newlines. Entities are decoded
    and runs of spaces collapse within each line.

    Args:
        html: Raw message content. Plain text passes through unchanged
            apart from whitespace cleanup.

    Returns:
        Trimmed plain text.
    """
    if not html:
        return ""

    if "<URIObject" in html:
        placeholder = _file_placeholder(html)
        if placeholder is not None:
            return placeholder

    parser = _TextParser()
    parser.feed(html)
    parser.close()
    text = "".join(parser.chunks).replace("\xa0", " ")

    lines = [_SPACE_RUN.sub(" ", line).lstrip(" ").rstrip() for line in text.splitlines()]
    return "\n".join(lines).strip()
