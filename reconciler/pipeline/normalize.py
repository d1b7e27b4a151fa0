"""
Text Normalization

Canonicalizes venue names and addresses before they are compared.

Two modes exist and must not be mixed:
    - normalize(): resolution matching. Venue-type words such as "bar" or
      "restaurant" are kept, because "Zion Bar" and "Zion Restaurant" are
      different search results.
    - normalize_for_dedup(): duplicate detection. Venue-type words are
      dropped, because stored records of the same venue often disagree on
      them ("Tortuga" vs "Tortuga Bar").

Normalized strings are comparison keys only and are never persisted as a
display value.
"""

import re
from typing import Iterable, Optional

DEFAULT_GENERIC_WORDS = ("restaurant", "bar", "cafe", "bistro", "lounge", "club", "pub")
DEFAULT_ADDRESS_STOPWORDS = ("malta", "gozo", "kigali", "rwanda")

_WHITESPACE_RE = re.compile(r"\s+")


def normalize(text: Optional[str]) -> str:
    """
    Lower-case, strip punctuation and collapse whitespace.

    Letters and digits of any script survive ("Ħelu Manna" keeps its Ħ);
    every other character, underscore included, is removed.

    >>> normalize("  Paul's   Bistro & Bar! ")
    'pauls bistro bar'
    """
    if not text:
        return ""
    kept = "".join(ch for ch in text.lower() if ch.isalnum() or ch.isspace())
    return _WHITESPACE_RE.sub(" ", kept).strip()


def _drop_tokens(normalized: str, stopwords: Iterable[str]) -> str:
    stop = {normalize(word) for word in stopwords}
    return " ".join(token for token in normalized.split(" ") if token and token not in stop)


def normalize_for_dedup(
    text: Optional[str],
    generic_words: Iterable[str] = DEFAULT_GENERIC_WORDS,
) -> str:
    """
    Normalize a name for duplicate detection.

    >>> normalize_for_dedup("Tortuga Bar & Restaurant")
    'tortuga'
    """
    return _drop_tokens(normalize(text), generic_words)


def normalize_address(
    text: Optional[str],
    stopwords: Iterable[str] = DEFAULT_ADDRESS_STOPWORDS,
) -> str:
    """
    Normalize an address for duplicate detection.

    Locality words shared by every address of a regional catalog are
    dropped so they do not inflate similarity.

    >>> normalize_address("Triq il-Merkanti, Valletta, Malta")
    'triq ilmerkanti valletta'
    """
    return _drop_tokens(normalize(text), stopwords)
