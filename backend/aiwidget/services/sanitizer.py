"""
Citation/token sanitizer.

File-search assistants decorate answers with inline citation markers such as
``【4:0†source】``. Markers arrive split across deltas, so the sanitizer keeps
the raw text seen so far and only forwards the part of the cleaned text that
has not been sent yet.
"""
import logging
import re

logger = logging.getLogger(__name__)

MARKER_OPEN = "【"
MARKER_CLOSE = "】"
CITATION_MARKER_RE = re.compile(r"【[^【】]*】")


def strip_markers(text: str) -> str:
    """Remove every complete citation marker from ``text``."""
    if not text:
        return ""
    return CITATION_MARKER_RE.sub("", text)


class CitationSanitizer:
    """
    Turns raw incremental text into clean increments.

    The concatenation of everything returned by ``feed`` and ``finish`` equals
    ``strip_markers(final_text)`` whenever the final text is the concatenation
    of the fed deltas.
    """

    def __init__(self):
        self._raw_parts = []
        self.sent_text = ""

    @property
    def raw_text(self) -> str:
        return "".join(self._raw_parts)

    def _visible(self, raw: str) -> str:
        # an opened marker without its close may still become a citation
        last_open = raw.rfind(MARKER_OPEN)
        if last_open != -1 and MARKER_CLOSE not in raw[last_open:]:
            raw = raw[:last_open]
        return strip_markers(raw)

    def _advance(self, cleaned: str) -> str:
        if not cleaned.startswith(self.sent_text):
            logger.warning(
                "Sanitized text diverged from text already sent to the client",
                extra={"event": "sanitizer_divergence"},
            )
        if len(cleaned) <= len(self.sent_text):
            return ""
        piece = cleaned[len(self.sent_text):]
        self.sent_text += piece
        return piece

    def feed(self, delta: str) -> str:
        """Consume one raw delta and return the clean text to forward (maybe empty)."""
        if not delta:
            return ""
        self._raw_parts.append(delta)
        return self._advance(self._visible(self.raw_text))

    def finish(self, final_text: str = None) -> str:
        """
        Flush with the authoritative final text.

        Without ``final_text`` the raw text collected so far is used. A
        dangling opened marker is literal text at this point.
        """
        if final_text is None:
            final_text = self.raw_text
        return self._advance(strip_markers(final_text))
