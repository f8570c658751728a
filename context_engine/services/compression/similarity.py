"""Edit-distance similarity of event contents."""

import re

_ISO_TIMESTAMP = re.compile(r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?")
_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")
_TIMESTAMP_FIELD = re.compile(r"timestamp[:\s]*[\"'][^\"']*[\"']", re.IGNORECASE)
_DIGITS = re.compile(r"\d+")
_SPACES = re.compile(r"\s+")


def strip_timestamps(text: str) -> str:
    """Remove timestamp fields and ISO dates from text."""
    text = _TIMESTAMP_FIELD.sub("", text)
    text = _ISO_TIMESTAMP.sub("", text)
    return _ISO_DATE.sub("", text)


def normalize_for_similarity(text: str) -> str:
    """Lowercase, drop timestamps and map every digit run to "N"."""
    text = strip_timestamps(text)
    text = _DIGITS.sub("N", text)
    return _SPACES.sub(" ", text).strip().lower()


def levenshtein(a: str, b: str) -> int:
    """Classic two-row edit distance."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def similarity_ratio(a: str, b: str, max_chars: int = 512) -> float:
    """1 - distance / longer length over at most `max_chars` characters."""
    a, b = a[:max_chars], b[:max_chars]
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longer


def is_similar(a: str, b: str, threshold: float = 0.8, max_chars: int = 512) -> bool:
    """Whether two contents are more similar than `threshold` once normalized.

    Pairs whose full normalized length ratio rules out the threshold are
    rejected without computing the distance. Contents longer than `max_chars`
    must match on both their leading and trailing `max_chars` characters.
    """
    na = normalize_for_similarity(a)
    nb = normalize_for_similarity(b)
    longer = max(len(na), len(nb))
    if longer == 0:
        return True
    if min(len(na), len(nb)) / longer < threshold:
        return False
    if similarity_ratio(na, nb, max_chars) <= threshold:
        return False
    if longer <= max_chars:
        return True
    return similarity_ratio(na[-max_chars:], nb[-max_chars:], max_chars) > threshold
