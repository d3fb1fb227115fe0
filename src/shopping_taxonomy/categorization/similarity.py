"""String similarity used to compare product names with categories and with each other."""
from rapidfuzz.distance import Levenshtein


def edit_distance(a: str, b: str) -> int:
    """
    Case-insensitive Levenshtein distance over code points.

    Example:
        >>> edit_distance("kitten", "sitting")
        3
    """
    return Levenshtein.distance(a.lower(), b.lower())


def name_similarity(a: str, b: str) -> float:
    """
    1 - distance / longer length, in [0, 1].

    Two empty strings count as identical.
    """
    if not a and not b:
        return 1.0
    return Levenshtein.normalized_similarity(a.lower(), b.lower())
