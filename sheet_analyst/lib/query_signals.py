import re
from typing import List, Optional


TOP_N_RE = re.compile(r"\btop[\s-]*(\d+)\b", re.I)
BOTTOM_N_RE = re.compile(r"\b(?:bottom|worst|lowest)[\s-]*(\d+)\b", re.I)

SUPERLATIVE_MAX_RE = re.compile(
    r"\b(most|highest|largest|biggest|greatest|maximum|max|best|top)\b",
    re.I,
)
SUPERLATIVE_MIN_RE = re.compile(
    r"\b(least|lowest|smallest|minimum|min|worst|fewest)\b",
    re.I,
)

FILTER_CUE_RE = re.compile(r"\b(filter|where|only)\b|\bshow\s+all\b", re.I)
AGGREGATION_CUE_RE = re.compile(r"\b(sums?|totals?|average|averages|mean)\b", re.I)
COMPARISON_CUE_RE = re.compile(r"\b(compar\w*|vs|versus|between)\b", re.I)
TREND_CUE_RE = re.compile(r"\b(trends?|growth|grow\w*|chang(?:e|es|ed|ing))\b|\bover\s+time\b", re.I)
SORT_CUE_RE = re.compile(r"\b(sort(?:ed|ing)?|order(?:ed)?|rank(?:ed|ing)?)\b", re.I)
ASCENDING_CUE_RE = re.compile(r"\b(ascending|asc|lowest|smallest)\b", re.I)

CHART_REQUEST_RE = re.compile(
    r"\b(?:(?:bar|line|pie|area|column|donut)\s+)?(?:chart|graph|plot)s?\b|\bvisuali[sz]\w*\b",
    re.I,
)

CHART_SWITCH_RE = re.compile(
    r"\b(?:change|switch|convert|turn|make)\s+(?:(?:it|this|that|the\s+(?:chart|graph))\s+)?(?:to|into|as)\b",
    re.I,
)

QUOTED_TERM_RE = re.compile(r"[\"“”]([^\"“”]+)[\"“”]")
FILTER_TERM_RES = (
    re.compile(r"\bwhere\s+(\w+)", re.I),
    re.compile(r"\bonly\s+(\w+)", re.I),
    re.compile(r"\bfilter\s+by\s+(\w+)", re.I),
    re.compile(r"\bcontaining\s+(\w+)", re.I),
)
MIN_FILTER_TERM_CHARS = 3

ENTITY_PHRASE_RE = re.compile(r"\b(?:of|for|in|by)\s+([^,.;:?!]+)", re.I)
ENTITY_MAX_WORDS = 3
ENTITY_STOPWORDS = {"the", "a", "an", "all", "each", "every", "this", "that", "my", "our"}


def extract_top_n(text: str) -> Optional[int]:
    m = TOP_N_RE.search(text or "")
    if not m:
        return None
    n = int(m.group(1))
    return n if n > 0 else None


def extract_bottom_n(text: str) -> Optional[int]:
    m = BOTTOM_N_RE.search(text or "")
    if not m:
        return None
    n = int(m.group(1))
    return n if n > 0 else None


def superlative_direction(text: str) -> Optional[str]:
    """Return "max" or "min" for the first superlative in the text."""
    max_m = SUPERLATIVE_MAX_RE.search(text or "")
    min_m = SUPERLATIVE_MIN_RE.search(text or "")
    if max_m and min_m:
        return "max" if max_m.start() < min_m.start() else "min"
    if max_m:
        return "max"
    if min_m:
        return "min"
    return None


def has_superlative_cue(text: str) -> bool:
    return superlative_direction(text) is not None


def has_filter_cue(text: str) -> bool:
    return bool(FILTER_CUE_RE.search(text or ""))


def has_aggregation_cue(text: str) -> bool:
    return bool(AGGREGATION_CUE_RE.search(text or ""))


def has_comparison_cue(text: str) -> bool:
    return bool(COMPARISON_CUE_RE.search(text or ""))


def has_trend_cue(text: str) -> bool:
    return bool(TREND_CUE_RE.search(text or ""))


def has_sort_cue(text: str) -> bool:
    return bool(SORT_CUE_RE.search(text or ""))


def has_ascending_cue(text: str) -> bool:
    return bool(ASCENDING_CUE_RE.search(text or ""))


def has_chart_request(text: str) -> bool:
    return bool(CHART_REQUEST_RE.search(text or ""))


def strip_chart_phrases(text: str) -> str:
    """Drop chart-type wording ("as a pie chart", "change it to") so only analytic words remain."""
    s = CHART_SWITCH_RE.sub(" ", text or "")
    s = CHART_REQUEST_RE.sub(" ", s)
    return re.sub(r"\s+", " ", s).strip()


def extract_filter_terms(text: str) -> List[str]:
    s = text or ""
    terms: List[str] = [m.group(1).strip() for m in QUOTED_TERM_RE.finditer(s)]
    for pattern in FILTER_TERM_RES:
        terms.extend(m.group(1) for m in pattern.finditer(s.lower()))
    out: List[str] = []
    for term in terms:
        if len(term) >= MIN_FILTER_TERM_CHARS and term not in out:
            out.append(term)
    return out


def extract_entity_phrases(text: str) -> List[str]:
    """
    Candidate entity phrases following of/for/in/by, longest first.
    "highest sales in north region" -> ["north region", "north"].
    """
    out: List[str] = []
    for m in ENTITY_PHRASE_RE.finditer(text or ""):
        words = [w for w in m.group(1).strip().lower().split() if w]
        while words and words[0] in ENTITY_STOPWORDS:
            words = words[1:]
        words = words[:ENTITY_MAX_WORDS]
        for size in range(len(words), 0, -1):
            phrase = " ".join(words[:size])
            if phrase not in out:
                out.append(phrase)
    return out
