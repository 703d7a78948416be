import operator
import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple

OPERATOR_SYNONYMS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    (">", ("above", "greater than", "more than", "over", "exceeds", "higher than", ">")),
    ("<", ("below", "less than", "under", "fewer than", "<")),
    (">=", ("at least", "no less than", "greater than or equal to", ">=")),
    ("<=", ("at most", "no more than", "up to", "less than or equal to", "<=")),
    ("==", ("equal to", "equals", "exactly", "==", "=")),
)

COMPARATORS: Dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
    "==": operator.eq,
}

_NUMBER = r"(-?\d+(?:\.\d+)?)"


@dataclass(frozen=True)
class NumericCondition:
    column: str
    operator: str
    value: float

    def matches(self, number: Optional[float]) -> bool:
        if number is None:
            return False
        return COMPARATORS[self.operator](number, self.value)

    def describe(self) -> str:
        value = int(self.value) if float(self.value).is_integer() else self.value
        return f"{self.column} {self.operator} {value}"


def _synonym_pattern(synonym: str) -> str:
    if synonym[0].isalpha():
        words = r"\s+".join(re.escape(w) for w in synonym.split())
        return rf"\b{words}\b"
    return re.escape(synonym)


def _header_pattern(header: str) -> str:
    return r"\s+".join(re.escape(w) for w in header.split())


def _condition_patterns(header: str, synonym: str) -> Tuple[re.Pattern, re.Pattern]:
    h = _header_pattern(header)
    syn = _synonym_pattern(synonym)
    gap = r"\s+" if synonym[0].isalpha() else r"\s*"
    # Headers keep their own boundaries; symbols like "(%)" defeat \b.
    head = rf"(?<![\w]){h}(?![\w])"
    forward = re.compile(rf"{head}\s*{syn}{gap}{_NUMBER}", re.I)
    backward = re.compile(rf"{syn}{gap}{_NUMBER}\s+(?:in\s+|of\s+)?{head}", re.I)
    return forward, backward


def extract_numeric_condition(question: str, headers: Sequence[str]) -> Optional[NumericCondition]:
    """
    First (column, operator, number) found in the question.

    Scans headers in the given order, then operators, then their synonyms,
    trying "<header> <synonym> <number>" before "<synonym> <number> <header>".
    """
    q = question or ""
    if not q.strip():
        return None
    for header in headers:
        name = str(header).strip()
        if not name:
            continue
        for op, synonyms in OPERATOR_SYNONYMS:
            for synonym in synonyms:
                for pattern in _condition_patterns(name, synonym):
                    m = pattern.search(q)
                    if m:
                        return NumericCondition(column=header, operator=op, value=float(m.group(1)))
    return None
