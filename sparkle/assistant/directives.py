"""
Directive Parser

The provider is told to open a reply with ``<<NAME_CHANGE:Name>>`` when the
user asks the assistant to rename itself. This module finds that marker in
the accumulated output, extracts the name and strips the marker from the
text that gets saved.

The grammar is a fixed pair of delimiters around a payload:

    <<NAME_CHANGE:<payload>>>

``parse_directive`` is a pure function over the text. ``DirectiveTracker``
wraps it with the once-per-operation rule: after a marker has been applied,
later occurrences are ordinary text.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

MARKER_OPEN = "<<NAME_CHANGE:"
MARKER_CLOSE = ">>"


class DirectiveStatus(str, Enum):
    """What the parser found in the text."""
    COMPLETE = "complete"      # Both delimiters present
    INCOMPLETE = "incomplete"  # Opening seen (possibly partially), close not yet
    ABSENT = "absent"


@dataclass(frozen=True)
class RenameDirective:
    """Rename the assistant identity."""
    new_name: str


@dataclass(frozen=True)
class ParseResult:
    """
    Result of scanning accumulated text.

    ``span`` is the (start, end) of the marker in the scanned text when the
    status is COMPLETE. ``directive`` is None for a complete marker whose
    payload is blank.
    """
    status: DirectiveStatus
    clean_text: str
    directive: Optional[RenameDirective] = None
    span: Optional[tuple[int, int]] = None


def _ends_with_partial_open(text: str) -> bool:
    """True if the text ends with a cut-off ``<<NAME_CHANGE:`` prefix."""
    for size in range(len(MARKER_OPEN) - 1, 1, -1):
        if text.endswith(MARKER_OPEN[:size]):
            return True
    return False


def parse_directive(text: str) -> ParseResult:
    """
    Find the first complete marker in ``text``.

    Returns the text with that one marker removed. An incomplete marker is
    left in place so it is kept as literal content if the stream ends there.
    """
    start = text.find(MARKER_OPEN)
    if start == -1:
        status = DirectiveStatus.INCOMPLETE if _ends_with_partial_open(text) else DirectiveStatus.ABSENT
        return ParseResult(status=status, clean_text=text)

    payload_start = start + len(MARKER_OPEN)
    close = text.find(MARKER_CLOSE, payload_start)
    if close == -1:
        return ParseResult(status=DirectiveStatus.INCOMPLETE, clean_text=text)

    end = close + len(MARKER_CLOSE)
    name = text[payload_start:close].strip()
    return ParseResult(
        status=DirectiveStatus.COMPLETE,
        clean_text=text[:start] + text[end:],
        directive=RenameDirective(new_name=name) if name else None,
        span=(start, end),
    )


class DirectiveTracker:
    """
    Accumulates raw stream text and applies at most one directive.

    The raw text is never rewritten; once a marker is found its span is
    remembered and cut out of ``clean_text``.
    """

    def __init__(self):
        self._raw_text = ""
        self._span: Optional[tuple[int, int]] = None
        self.directive: Optional[RenameDirective] = None

    @property
    def raw_text(self) -> str:
        return self._raw_text

    @property
    def applied(self) -> bool:
        """Whether a marker has already been consumed."""
        return self._span is not None

    @property
    def clean_text(self) -> str:
        if self._span is None:
            return self._raw_text
        start, end = self._span
        return self._raw_text[:start] + self._raw_text[end:]

    def append(self, fragment: str) -> None:
        self._raw_text += fragment

    def scan(self) -> Optional[RenameDirective]:
        """
        Look for a marker in everything accumulated so far.

        Returns the directive the first time a complete marker with a
        non-blank name is found, otherwise None.
        """
        if self._span is not None:
            return None

        result = parse_directive(self._raw_text)
        if result.status is not DirectiveStatus.COMPLETE:
            return None

        self._span = result.span
        self.directive = result.directive
        return result.directive
