# utils/label_normalizer.py
import re
import unicodedata

from rapidfuzz import fuzz

# Keys shorter than this carry no matching signal
MIN_KEY_LENGTH = 3

# Alias learning window: below is noise, at/above the text already matches the label
LEARN_MIN_SCORE = 0.5
LEARN_MAX_SCORE = 0.98


def normalize_label(raw: str) -> str:
    s = unicodedata.normalize("NFKD", str(raw or "").lower())
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = re.sub(r"[^a-z0-9]+", "", s)
    return s.strip()


def has_signal(key: str) -> bool:
    return bool(key) and len(key) >= MIN_KEY_LENGTH


def label_similarity(a: str, b: str) -> float:
    """
    Symmetric similarity of two labels in [0, 1].
    Both sides are normalized first, so callers may pass raw text.
    """
    s1 = normalize_label(a)
    s2 = normalize_label(b)
    if not s1 or not s2:
        return 0.0
    if s1 == s2:
        return 1.0
    return max(0.0, min(1.0, fuzz.ratio(s1, s2) / 100.0))


def worth_learning(score: float) -> bool:
    return LEARN_MIN_SCORE <= score < LEARN_MAX_SCORE
