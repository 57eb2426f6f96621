"""
Encoding and decoding of product markers embedded in model output

A marker is ``[PRODUCT:<id>]`` where the id is one or more of ``[A-Za-z0-9_-]``.
Complete markers are swapped for an HTML-comment placeholder that renderers
ignore and segment derivation splits on. Placeholders are delimited by a
control character that is stripped from model output, so only a resolved
marker can produce one.
"""
import re
from typing import List, NamedTuple, Optional, Union

MARKER_PREFIX = "[PRODUCT:"
MARKER_SUFFIX = "]"
ID_CHARS = r"A-Za-z0-9_\-"

MARKER_PATTERN = re.compile(r"\[PRODUCT:([" + ID_CHARS + r"]+)\]")
# Delimits placeholders; stripped from model output so raw text can never
# spell a placeholder
PLACEHOLDER_SENTINEL = "\x1f"

PLACEHOLDER_PATTERN = re.compile(
    "<!-- " + PLACEHOLDER_SENTINEL + "PRODUCT_PLACEHOLDER:([" + ID_CHARS + "]+)" + PLACEHOLDER_SENTINEL + " -->"
)
_ID_TAIL_PATTERN = re.compile(r"[" + ID_CHARS + r"]*")


class MarkerMatch(NamedTuple):
    """A complete marker (or placeholder) located in a string"""
    product_id: str
    start: int
    end: int


def placeholder_for(product_id: str) -> str:
    """Placeholder token standing in for a resolved marker"""
    return f"<!-- {PLACEHOLDER_SENTINEL}PRODUCT_PLACEHOLDER:{product_id}{PLACEHOLDER_SENTINEL} -->"


def strip_sentinels(text: str) -> str:
    """Remove placeholder delimiters from raw model output"""
    return text.replace(PLACEHOLDER_SENTINEL, "")


def marker_for(product_id: str) -> str:
    """Wire-level marker for a product id"""
    return f"{MARKER_PREFIX}{product_id}{MARKER_SUFFIX}"


def find_complete_markers(text: str) -> List[MarkerMatch]:
    """All non-overlapping complete markers, leftmost first"""
    return [
        MarkerMatch(match.group(1), match.start(), match.end())
        for match in MARKER_PATTERN.finditer(text)
    ]


def dangling_prefix_offset(text: str) -> Optional[int]:
    """
    Start offset of a trailing suffix that may still grow into a marker.

    The suffix is either a non-empty prefix of ``[PRODUCT:`` (a fragment
    boundary can land inside the literal) or the full literal followed by
    id characters with no closing bracket yet. Neither form contains ``[``
    after its first character, so only the last ``[`` can start one.
    """
    start = text.rfind("[")
    if start == -1:
        return None

    tail = text[start:]
    if MARKER_PREFIX.startswith(tail):
        return start
    if tail.startswith(MARKER_PREFIX) and _ID_TAIL_PATTERN.fullmatch(tail, len(MARKER_PREFIX)):
        return start
    return None


def substitute_placeholders(text: str) -> str:
    """Replace every complete marker with its placeholder; other text is untouched"""
    return MARKER_PATTERN.sub(lambda match: placeholder_for(match.group(1)), text)


def extract_ids(text: str) -> List[str]:
    """Ids of all complete markers in appearance order, duplicates kept"""
    return MARKER_PATTERN.findall(text)


def split_placeholders(document: str) -> List[Union[str, MarkerMatch]]:
    """
    Split a substituted document into text runs and placeholder matches.

    Text runs are returned verbatim (possibly empty); placeholders are
    returned as MarkerMatch with offsets into ``document``.
    """
    parts: List[Union[str, MarkerMatch]] = []
    cursor = 0
    for match in PLACEHOLDER_PATTERN.finditer(document):
        parts.append(document[cursor:match.start()])
        parts.append(MarkerMatch(match.group(1), match.start(), match.end()))
        cursor = match.end()
    parts.append(document[cursor:])
    return parts
