import re
from typing import Dict, Optional, Sequence, Tuple

from sheet_analyst.lib.dataset import Row, to_number

# canonical keyword -> column-name fragments, tried in order
COLUMN_SYNONYMS: Dict[str, Tuple[str, ...]] = {
    "attack": ("attack", "atk", "offense", "power"),
    "defense": ("defense", "defence", "def", "armor"),
    "hp": ("hp", "health", "hit points"),
    "speed": ("speed", "spd", "velocity"),
    "sales": ("sales", "revenue", "amount", "total", "value", "sold"),
    "price": ("price", "cost", "amount", "value", "rate"),
    "quantity": ("quantity", "qty", "count", "number", "units"),
    "revenue": ("revenue", "sales", "income", "earnings", "turnover"),
    "profit": ("profit", "margin", "earnings", "gain"),
    "score": ("score", "rating", "points", "grade"),
    "age": ("age", "years", "old"),
    "weight": ("weight", "mass", "kg", "pounds"),
    "height": ("height", "length", "tall", "cm"),
    "date": ("date", "time", "day", "month", "year"),
    "category": ("category", "type", "class", "group"),
    "region": ("region", "area", "location", "place"),
    "product": ("product", "item", "goods"),
    "customer": ("customer", "client", "user"),
}

_KEYWORD_RES = {k: re.compile(rf"\b{re.escape(k)}", re.I) for k in COLUMN_SYNONYMS}


def _direct_match(question_lower: str, candidates: Sequence[str]) -> Optional[str]:
    # Longer names first so "Sp. Attack" wins over "Attack" when both appear.
    for col in sorted(candidates, key=lambda c: -len(str(c))):
        name = str(col).strip().lower()
        if name and name in question_lower:
            return col
    return None


def _synonym_match(question: str, candidates: Sequence[str]) -> Optional[str]:
    for keyword, fragments in COLUMN_SYNONYMS.items():
        if not _KEYWORD_RES[keyword].search(question):
            continue
        for fragment in fragments:
            match = next((c for c in candidates if fragment in str(c).lower()), None)
            if match is not None:
                return match
    return None


def resolve_column(
    question: str,
    candidates: Sequence[str],
    rows: Optional[Sequence[Row]] = None,
) -> Optional[str]:
    """
    Pick the single column a question is most likely about.

    Order: column name quoted in the question, synonym table, first column
    holding a numeric value (only when ``rows`` are given), first candidate.
    Returns None only when there are no candidates.
    """
    cols = [c for c in candidates if str(c).strip()]
    if not cols:
        return None
    q = question or ""

    direct = _direct_match(q.lower(), cols)
    if direct is not None:
        return direct

    synonym = _synonym_match(q, cols)
    if synonym is not None:
        return synonym

    if rows:
        for col in cols:
            if any(to_number(row.get(col)) is not None for row in rows):
                return col

    return cols[0]
