"""
Deterministic analysis handlers.

Every handler has the same shape, ``handler(question, dataset, limits)``, and
returns a :class:`HandlerResult`. Sheets are processed independently: a sheet
with no rows or no suitable column contributes nothing, and a handler for
which no sheet contributed returns ``HandlerResult.not_applicable`` so the
router can move on. Handlers never raise on data problems.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import pandas as pd

from sheet_analyst.lib.column_resolver import resolve_column
from sheet_analyst.lib.dataset import (
    Dataset,
    Row,
    categorical_columns,
    date_columns,
    format_number,
    format_value,
    identifier_column,
    is_blank,
    numeric_columns,
    row_identifier,
    sheet_headers,
    text_columns,
    to_number,
    to_timestamp,
)
from sheet_analyst.lib.models import ChartPayload
from sheet_analyst.lib.numeric_conditions import NumericCondition, extract_numeric_condition
from sheet_analyst.lib.query_signals import (
    extract_bottom_n,
    extract_entity_phrases,
    extract_filter_terms,
    extract_top_n,
    has_ascending_cue,
    superlative_direction,
)

LABEL_KEY = "label"


@dataclass(frozen=True)
class HandlerLimits:
    result_sample_rows: int = 5
    sort_preview_rows: int = 20
    trend_preview_points: int = 10


@dataclass
class SheetFinding:
    sheet: str
    lines: List[str]
    rows: List[Row] = field(default_factory=list)
    chart: Optional[ChartPayload] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


@dataclass
class HandlerResult:
    intent: str
    title: str = ""
    findings: List[SheetFinding] = field(default_factory=list)
    reason: str = ""

    @classmethod
    def not_applicable(cls, intent: str, reason: str) -> "HandlerResult":
        return cls(intent=intent, reason=reason)

    @property
    def applicable(self) -> bool:
        return bool(self.findings)

    @property
    def text(self) -> str:
        if not self.findings:
            return ""
        blocks = [f.text for f in self.findings]
        if self.title:
            blocks.insert(0, self.title)
        return "\n\n".join(blocks)

    @property
    def chart(self) -> Optional[ChartPayload]:
        return next((f.chart for f in self.findings if f.chart is not None), None)

    @property
    def rows(self) -> List[Row]:
        out: List[Row] = []
        for finding in self.findings:
            out.extend(finding.rows)
        return out


@dataclass(frozen=True)
class ColumnStats:
    column: str
    total: float
    mean: float
    minimum: float
    maximum: float
    count: int


def _non_empty_sheets(dataset: Dataset) -> Iterator[Tuple[str, List[Row], List[str]]]:
    for name, rows in dataset.iter_sheets():
        if rows:
            yield name, rows, sheet_headers(rows)


def _cell_text(value: Any) -> str:
    return "" if value is None else str(value)


def _format_date(ts: pd.Timestamp) -> str:
    if ts == ts.normalize():
        return ts.date().isoformat()
    return ts.isoformat()


def _labelled_chart_rows(
    pairs: Sequence[Tuple[float, Row]],
    headers: Sequence[str],
    column: str,
) -> Tuple[str, List[Row]]:
    x_key = identifier_column(pairs[0][1], headers) if pairs else None
    data: List[Row] = []
    for position, (value, row) in enumerate(pairs, start=1):
        record = dict(row)
        record[column] = value
        if x_key is None:
            record[LABEL_KEY] = row_identifier(row, headers, position)
        data.append(record)
    return x_key or LABEL_KEY, data


def _ranked(
    question: str,
    dataset: Dataset,
    n: int,
    descending: bool,
    intent: str,
) -> HandlerResult:
    label = "Top" if descending else "Bottom"
    findings: List[SheetFinding] = []
    for name, rows, headers in _non_empty_sheets(dataset):
        numeric = numeric_columns(rows, headers)
        if not numeric:
            continue
        column = resolve_column(question, numeric, rows)
        scored = [(to_number(r.get(column)), r) for r in rows]
        valid = [(v, r) for v, r in scored if v is not None]
        if not valid:
            continue
        picked = sorted(valid, key=lambda p: p[0], reverse=descending)[:n]
        lines = [f"Sheet: {name}", f"{label} {n} by {column}:"]
        for i, (value, row) in enumerate(picked, start=1):
            lines.append(f"{i}. {row_identifier(row, headers, i)}: {format_number(value)}")
        x_key, data = _labelled_chart_rows(picked, headers, column)
        chart = ChartPayload(
            type="bar",
            title=f"{label} {n} by {column}",
            data=data,
            xKey=x_key,
            yKey=column,
        )
        findings.append(
            SheetFinding(sheet=name, lines=lines, rows=[r for _, r in picked], chart=chart, details={"column": column})
        )
    if not findings:
        return HandlerResult.not_applicable(intent, "no numeric column")
    return HandlerResult(intent=intent, title=f"{label} {n} Analysis:", findings=findings)


def handle_top_n(question: str, dataset: Dataset, limits: HandlerLimits) -> HandlerResult:
    n = extract_top_n(question)
    if n is None:
        return HandlerResult.not_applicable("top_n", "no top-N pattern")
    return _ranked(question, dataset, n, descending=True, intent="top_n")


def handle_bottom_n(question: str, dataset: Dataset, limits: HandlerLimits) -> HandlerResult:
    n = extract_bottom_n(question)
    if n is None:
        return HandlerResult.not_applicable("bottom_n", "no bottom-N pattern")
    return _ranked(question, dataset, n, descending=False, intent="bottom_n")


def _narrow_to_entity(
    phrases: Sequence[str],
    rows: List[Row],
    headers: Sequence[str],
) -> Tuple[Optional[str], List[Row]]:
    texts = text_columns(rows, headers)
    if not texts:
        return None, rows
    for phrase in phrases:
        pattern = re.compile(rf"\b{re.escape(phrase)}\b", re.I)
        narrowed = [
            r for r in rows if any(isinstance(r.get(c), str) and pattern.search(r.get(c)) for c in texts)
        ]
        if narrowed:
            return phrase, narrowed
    return None, rows


def handle_extremum(question: str, dataset: Dataset, limits: HandlerLimits) -> HandlerResult:
    direction = superlative_direction(question)
    if direction is None:
        return HandlerResult.not_applicable("extremum", "no superlative")
    word = "Highest" if direction == "max" else "Lowest"
    phrases = extract_entity_phrases(question)
    findings: List[SheetFinding] = []
    for name, rows, headers in _non_empty_sheets(dataset):
        numeric = numeric_columns(rows, headers)
        if not numeric:
            continue
        column = resolve_column(question, numeric, rows)
        entity, candidates = _narrow_to_entity(phrases, rows, headers)

        best: Optional[Tuple[float, Row]] = None
        for row in candidates:
            value = to_number(row.get(column))
            if value is None:
                continue
            if best is None or (value > best[0] if direction == "max" else value < best[0]):
                best = (value, row)
        if best is None:
            continue

        value, row = best
        scope = f" for {entity}" if entity else ""
        lines = [
            f"Sheet: {name}",
            f"{word} {column}{scope}: {row_identifier(row, headers)} ({format_number(value)})",
            f"Rows considered: {len(candidates)}",
        ]
        x_key, data = _labelled_chart_rows([best], headers, column)
        chart = ChartPayload(type="bar", title=f"{word} {column}{scope}", data=data, xKey=x_key, yKey=column)
        findings.append(
            SheetFinding(
                sheet=name,
                lines=lines,
                rows=[row],
                chart=chart,
                details={"column": column, "direction": direction, "entity": entity},
            )
        )
    if not findings:
        return HandlerResult.not_applicable("extremum", "no numeric column")
    return HandlerResult(intent="extremum", title="Extreme Value Analysis:", findings=findings)


def _filter_rows(
    question: str,
    rows: List[Row],
    condition: Optional[NumericCondition],
) -> List[Row]:
    if condition is not None:
        return [r for r in rows if condition.matches(to_number(r.get(condition.column)))]
    terms = [t.lower() for t in extract_filter_terms(question)]
    if not terms:
        return list(rows)
    return [r for r in rows if any(term in _cell_text(v).lower() for v in r.values() for term in terms)]


def _filter(question: str, dataset: Dataset, limits: HandlerLimits, numeric_only: bool) -> HandlerResult:
    findings: List[SheetFinding] = []
    for name, rows, headers in _non_empty_sheets(dataset):
        condition = extract_numeric_condition(question, headers)
        if condition is None and numeric_only:
            continue
        matched = _filter_rows(question, rows, condition)
        lines = [f"Sheet: {name}"]
        if condition is not None:
            lines.append(f"Condition: {condition.describe()}")
        lines.append(f"Total rows: {len(rows)}, Filtered rows: {len(matched)}")
        if matched:
            lines.append("Sample filtered data:")
            for i, row in enumerate(matched[: limits.result_sample_rows], start=1):
                lines.append(f"{i}. {row_identifier(row, headers, i)}")
        findings.append(
            SheetFinding(
                sheet=name,
                lines=lines,
                rows=matched,
                details={"condition": condition, "total_rows": len(rows), "matched_rows": len(matched)},
            )
        )
    if not findings:
        return HandlerResult.not_applicable("filter", "no rows")
    return HandlerResult(intent="filter", title="Filtered Data Analysis:", findings=findings)


def handle_filter(question: str, dataset: Dataset, limits: HandlerLimits) -> HandlerResult:
    return _filter(question, dataset, limits, numeric_only=False)


def handle_numeric_filter(question: str, dataset: Dataset, limits: HandlerLimits) -> HandlerResult:
    """Filter by a numeric condition, skipping sheets that lack the condition's column."""
    return _filter(question, dataset, limits, numeric_only=True)


def column_stats(rows: Sequence[Row], column: str) -> Optional[ColumnStats]:
    values = [v for v in (to_number(r.get(column)) for r in rows) if v is not None]
    if not values:
        return None
    total = sum(values)
    return ColumnStats(
        column=column,
        total=total,
        mean=total / len(values),
        minimum=min(values),
        maximum=max(values),
        count=len(values),
    )


def handle_aggregate(question: str, dataset: Dataset, limits: HandlerLimits) -> HandlerResult:
    findings: List[SheetFinding] = []
    for name, rows, headers in _non_empty_sheets(dataset):
        stats: Dict[str, ColumnStats] = {}
        lines = [f"Sheet: {name}"]
        for column in numeric_columns(rows, headers):
            st = column_stats(rows, column)
            if st is None:
                continue
            stats[column] = st
            lines.extend(
                [
                    f"{column}:",
                    f"  Total: {format_number(st.total)}",
                    f"  Average: {st.mean:,.2f}",
                    f"  Maximum: {format_number(st.maximum)}",
                    f"  Minimum: {format_number(st.minimum)}",
                    f"  Count: {st.count}",
                ]
            )
        if stats:
            findings.append(SheetFinding(sheet=name, lines=lines, details={"stats": stats}))
    if not findings:
        return HandlerResult.not_applicable("aggregate", "no numeric column")
    return HandlerResult(intent="aggregate", title="Aggregation Analysis:", findings=findings)


def handle_compare(question: str, dataset: Dataset, limits: HandlerLimits) -> HandlerResult:
    findings: List[SheetFinding] = []
    for name, rows, headers in _non_empty_sheets(dataset):
        categories = categorical_columns(rows, headers)
        if not categories:
            continue
        category = categories[0]
        numeric = [c for c in numeric_columns(rows, headers) if c != category]
        if not numeric:
            continue
        column = resolve_column(question, numeric, rows)

        groups: Dict[str, List[float]] = {}
        for row in rows:
            key = row.get(category)
            value = to_number(row.get(column))
            if is_blank(key) or value is None:
                continue
            groups.setdefault(str(key), []).append(value)
        if not groups:
            continue

        lines = [f"Sheet: {name}", f"Comparison by {category} ({column}):"]
        data: List[Row] = []
        summary: Dict[str, Dict[str, float]] = {}
        for key, values in groups.items():
            total = sum(values)
            avg = total / len(values)
            summary[key] = {"total": total, "average": avg, "count": len(values)}
            lines.append(f"{key}: Total={format_number(total)}, Average={avg:,.2f}, Count={len(values)}")
            data.append({category: key, column: total})
        chart = ChartPayload(
            type="bar",
            title=f"{column} by {category}",
            data=data,
            xKey=category,
            yKey=column,
        )
        findings.append(
            SheetFinding(
                sheet=name,
                lines=lines,
                chart=chart,
                details={"category": category, "column": column, "groups": summary},
            )
        )
    if not findings:
        return HandlerResult.not_applicable("compare", "no categorical and numeric column pair")
    return HandlerResult(intent="compare", title="Comparison Analysis:", findings=findings)


def handle_trend(question: str, dataset: Dataset, limits: HandlerLimits) -> HandlerResult:
    findings: List[SheetFinding] = []
    for name, rows, headers in _non_empty_sheets(dataset):
        dates = date_columns(rows, headers)
        if not dates:
            continue
        date_col = dates[0]
        numeric = [c for c in numeric_columns(rows, headers) if c != date_col]
        if not numeric:
            continue
        column = resolve_column(question, numeric, rows)

        points: List[Tuple[pd.Timestamp, float, Row]] = []
        for row in rows:
            ts = to_timestamp(row.get(date_col))
            value = to_number(row.get(column))
            if ts is None or value is None:
                continue
            points.append((ts, value, row))
        if not points:
            continue
        points.sort(key=lambda p: p[0])

        preview = points[: limits.trend_preview_points]
        lines = [f"Sheet: {name}", f"Trend over time ({date_col} vs {column}):"]
        lines.extend(f"{_format_date(ts)}: {format_number(value)}" for ts, value, _ in preview)
        lines.append(f"Total data points: {len(points)}")
        chart = ChartPayload(
            type="line",
            title=f"{column} over time",
            data=[{date_col: _format_date(ts), column: value} for ts, value, _ in preview],
            xKey=date_col,
            yKey=column,
        )
        findings.append(
            SheetFinding(
                sheet=name,
                lines=lines,
                rows=[r for _, _, r in points],
                chart=chart,
                details={"date_column": date_col, "column": column, "points": len(points)},
            )
        )
    if not findings:
        return HandlerResult.not_applicable("trend", "no date and numeric column pair")
    return HandlerResult(intent="trend", title="Trend Analysis:", findings=findings)


def handle_sort(question: str, dataset: Dataset, limits: HandlerLimits) -> HandlerResult:
    ascending = has_ascending_cue(question)
    direction = "ascending" if ascending else "descending"
    findings: List[SheetFinding] = []
    for name, rows, headers in _non_empty_sheets(dataset):
        column = resolve_column(question, headers, rows)
        if column is None:
            continue
        present = [r for r in rows if not is_blank(r.get(column))]
        keyed = [(to_number(r.get(column)), r) for r in present]
        # Mixed columns (codes like 1001 and "A-12") sort as text so no present row is lost.
        if keyed and all(v is not None for v, _ in keyed):
            ordered = [r for _, r in sorted(keyed, key=lambda p: p[0], reverse=not ascending)]
        else:
            ordered = sorted(present, key=lambda r: _cell_text(r.get(column)).casefold(), reverse=not ascending)
        if not ordered:
            continue
        lines = [f"Sheet: {name}", f"Sorted by {column} ({direction}):"]
        for i, row in enumerate(ordered[: limits.sort_preview_rows], start=1):
            lines.append(f"{i}. {row_identifier(row, headers, i)}: {format_value(row.get(column))}")
        findings.append(
            SheetFinding(sheet=name, lines=lines, rows=ordered, details={"column": column, "direction": direction})
        )
    if not findings:
        return HandlerResult.not_applicable("sort", "no sortable column")
    return HandlerResult(intent="sort", title="Sorted Data Analysis:", findings=findings)
