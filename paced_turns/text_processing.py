"""Text utilities for paced delivery.

extract_sentences() splits prose into sentences without breaking on the
periods inside abbreviations, numbers, URLs, code references, quotes or
parentheticals. calculate_delay() turns a piece of text into a simulated
typing delay.
"""

import random
import re
from typing import List, Optional

# Private-use code points, never present in model output
_OPEN = "\ue000"
_CLOSE = "\ue001"
_BREAK = "\ue002"
_PLACEHOLDER_RE = re.compile(_OPEN + r"(\d+)" + _CLOSE)

_EMOJI = (
    "\U0001F600-\U0001F64F"  # emoticons
    "\U0001F300-\U0001F5FF"  # symbols & pictographs
    "\U0001F680-\U0001F6FF"  # transport & map symbols
    "\U0001F1E0-\U0001F1FF"  # flags
    "\U00002702-\U000027B0"  # dingbats
    "\U0001F900-\U0001F9FF"  # supplemental symbols
    "\U0001FA00-\U0001FA6F"  # chess symbols
    "\U0001FA70-\U0001FAFF"  # symbols extended
    "\U00002600-\U000026FF"  # misc symbols
)
_EMOJI_JOINERS = "\u200d\ufe0e\ufe0f"

# Titles and abbreviations that are written capitalized
_CAPITALIZED_ABBREVIATIONS = [
    "Dr", "Mr", "Mrs", "Ms", "Prof", "Sr", "Jr", "St", "Mt", "Ave", "Rd",
    "Blvd", "Inc", "Corp", "Ltd", "Dept", "Col", "Capt", "Lt", "Sgt", "Rev", "Hon",
]

# Only abbreviations when a number follows: "No. 5", "Fig. 2"
_NUMBERED_ABBREVIATIONS = ["No", "Vol", "Fig", "Ref", "Ch", "Sec", "Art", "Nr", "Pt"]

# Latin and lowercase abbreviations, matched in any case
_ANY_CASE_ABBREVIATIONS = [
    r"e\.g", r"i\.e", r"etc", r"vs", r"cf", r"viz", r"approx", r"esp",
    r"govt", r"assn", r"mfg", r"intl", r"univ", r"misc", r"a\.m", r"p\.m",
]

_ABBREVIATION_RES = [
    re.compile(r"\b(?:" + "|".join(_CAPITALIZED_ABBREVIATIONS) + r")\."),
    re.compile(r"\b(?:" + "|".join(_NUMBERED_ABBREVIATIONS) + r")\.(?=\s*\d)", re.IGNORECASE),
    re.compile(r"(?<![\w.])(?:" + "|".join(_ANY_CASE_ABBREVIATIONS) + r")\.", re.IGNORECASE),
]

# Multi-letter initials such as U.S.A. or J.K.
_INITIALS_RE = re.compile(r"\b(?:[A-Z]\.){2,}")

_URL_RE = re.compile(r"\b(?:https?://|www\.)[^\s<>\"'“”«»]+")
_DOMAIN_RE = re.compile(
    r"\b(?:[a-z0-9-]+\.)+(?:com|org|net|io|dev|ai|edu|gov|app|co|uk|de)\b(?:/[^\s<>\"']*)?",
    re.IGNORECASE,
)
# IPv4, versions, decimals, clock times ("3.30 PM") and arithmetic ("2.5x")
_NUMBER_RE = re.compile(r"\bv?\d+(?:\.\d+)+")
_FILE_EXTENSION_RE = re.compile(r"\.\w{2,4}(?=\s+[a-z])")
# Method calls and property access: Math.floor(), obj.prop
_DOTTED_REFERENCE_RE = re.compile(r"\b[A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*)+(?:\(\))?")

_LINK_RES = [_URL_RE, _DOMAIN_RE]
_TECHNICAL_RES = [_NUMBER_RE, _FILE_EXTENSION_RE, _DOTTED_REFERENCE_RE]

_QUOTE_RES = [
    re.compile(r'"[^"\n]*"'),
    re.compile("“[^”\n]*”"),
    re.compile("«[^»\n]*»"),
    re.compile(r"(?<!\w)'[^'\n]*'(?!\w)"),
]
_PARENTHETICAL_RE = re.compile(r"\([^()\n]*\)")

_SENTENCE_START = r"\s+(?:[^\W\d_]|[¿¡" + _OPEN + r"])"
_AFTER_SPAN_RE = re.compile(r"\s*$|\s+(\S)")
_TERMINAL_PUNCTUATION = (".", "!", "?", "…")

_BOUNDARY_RE = re.compile(
    r"[.!?…]+(?=" + _SENTENCE_START + r"|\s*$|\s*[\"“«])"
    + "|" + _BREAK
    + r"|(?:—|--)(?=" + _SENTENCE_START + r")"
    + r"|[" + _EMOJI + r"][" + _EMOJI + _EMOJI_JOINERS + r"]*(?=" + _SENTENCE_START + r")"
)


def _protect(pattern: re.Pattern, text: str, store: List[str], trim_trailing: bool = False) -> str:
    """Replace every match of pattern with a numbered placeholder."""

    def replacer(match: re.Match) -> str:
        original = match.group(0)
        rest = ""
        if trim_trailing:
            kept = original.rstrip(".,!?;:)")
            original, rest = kept, original[len(kept):]
            if not original:
                return rest
        store.append(original)
        return f"{_OPEN}{len(store) - 1}{_CLOSE}{rest}"

    return pattern.sub(replacer, text)


def _protect_span(pattern: re.Pattern, text: str, store: List[str]) -> str:
    """Protect quoted or bracketed spans, marking the ones that end a sentence."""

    def replacer(match: re.Match) -> str:
        original = match.group(0)
        index = len(store)
        store.append(original)
        placeholder = f"{_OPEN}{index}{_CLOSE}"
        inner = _restore(original[1:-1], store, limit=index).rstrip()
        if inner.endswith(_TERMINAL_PUNCTUATION) and _starts_new_sentence(match.string, match.end()):
            placeholder += _BREAK
        return placeholder

    return pattern.sub(replacer, text)


def _starts_new_sentence(text: str, pos: int) -> bool:
    after = _AFTER_SPAN_RE.match(text, pos)
    if after is None:
        return False
    first = after.group(1)
    return first is None or first.isupper() or first in "¿¡" + _OPEN


def _restore(text: str, store: List[str], limit: Optional[int] = None) -> str:
    """Expand placeholders, including placeholders nested inside stored spans.

    A stored span can only contain placeholders created before it, so
    expansion of entry i only considers indices below i.
    """
    if limit is None:
        limit = len(store)

    def replacer(match: re.Match) -> str:
        index = int(match.group(1))
        if index >= limit:
            return match.group(0)
        return _restore(store[index], store, limit=index)

    return _PLACEHOLDER_RE.sub(replacer, text)


def extract_sentences(text: str) -> List[str]:
    """Split text into sentences.

    Sentence punctuation (. ! ? and ellipses, including runs like ?!),
    em-dashes, double hyphens and emoji end a sentence when followed by a
    new word, the end of the text, or an opening quote. The punctuation
    stays with the sentence it ends. Periods inside abbreviations,
    initials, URLs, domains, numbers, file names and dotted code
    references never split, and neither does punctuation inside quotes or
    parentheses unless the quoted span itself closes the sentence.

    Args:
        text: Arbitrary text.

    Returns:
        Sentences in order, each stripped. Empty input gives an empty list.
    """
    if not text or not text.strip():
        return []

    store: List[str] = []
    processed = text

    for pattern in _ABBREVIATION_RES:
        processed = _protect(pattern, processed, store)
    processed = _protect(_INITIALS_RE, processed, store)
    for pattern in _LINK_RES:
        processed = _protect(pattern, processed, store, trim_trailing=True)
    for pattern in _TECHNICAL_RES:
        processed = _protect(pattern, processed, store)
    for pattern in _QUOTE_RES:
        processed = _protect_span(pattern, processed, store)
    processed = _protect_span(_PARENTHETICAL_RE, processed, store)

    pieces = []
    last = 0
    for match in _BOUNDARY_RE.finditer(processed):
        pieces.append(processed[last:match.end()])
        last = match.end()
    pieces.append(processed[last:])

    sentences = []
    for piece in pieces:
        sentence = _restore(piece.replace(_BREAK, ""), store).strip()
        if sentence:
            sentences.append(sentence)
    return sentences


def count_words(text: str) -> int:
    """Whitespace-tokenized word count."""
    return len(text.split()) if text else 0


def calculate_delay(
    text: str,
    base_wpm: float,
    speed_variation: float,
    min_delay_ms: float,
    max_delay_ms: float,
    rng: Optional[random.Random] = None,
) -> float:
    """Simulated typing delay for a piece of text, in milliseconds.

    The typing speed is jittered by up to +/- speed_variation and slowed
    by up to 2x for long texts. The result is clamped to
    [min_delay_ms, max_delay_ms]; text without words gets min_delay_ms.

    Args:
        text: The text being "typed".
        base_wpm: Base typing speed in words per minute.
        speed_variation: Jitter factor in [0, 1].
        min_delay_ms: Lower bound.
        max_delay_ms: Upper bound.
        rng: Random source for the jitter draw (module random if None).
    """
    words = count_words(text)
    if words == 0:
        return min_delay_ms

    draw = (rng or random).random()
    jitter = 1 + (draw - 0.5) * 2 * speed_variation
    length_factor = min(1 + words / 50, 2)
    effective_wpm = base_wpm * jitter / length_factor
    if effective_wpm <= 0:
        return max_delay_ms

    delay_ms = words / effective_wpm * 60_000
    return max(min_delay_ms, min(max_delay_ms, delay_ms))
