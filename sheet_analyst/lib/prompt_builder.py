import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sheet_analyst.lib.dataset import Dataset, Row, sheet_headers
from sheet_analyst.lib.pipeline_prompts import default_prompts


@dataclass
class AnalysisRequest:
    model: str
    messages: List[Dict[str, str]]
    temperature: float
    max_tokens: int
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def prompt(self) -> str:
        return self.messages[-1]["content"] if self.messages else ""

    def to_kwargs(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": self.messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }


def _clip_cell(value: Any, max_chars: int) -> Any:
    if isinstance(value, str) and len(value) > max_chars:
        return value[:max_chars] + "..."
    return value


def _preview_row(row: Row, max_chars: int) -> str:
    clipped = {str(k): _clip_cell(v, max_chars) for k, v in row.items()}
    return json.dumps(clipped, ensure_ascii=False, default=str)


def build_data_context(dataset: Dataset, preview_rows: int = 5, max_cell_chars: int = 200) -> str:
    """Column list plus the first few rows of every sheet; never the full table."""
    parts: List[str] = []
    for name, rows in dataset.iter_sheets():
        parts.append(f"\nSheet: {name}")
        parts.append(f"Columns: {', '.join(sheet_headers(rows[:1]))}")
        parts.append(f"Sample Data (first {preview_rows} rows):")
        for i, row in enumerate(rows[:preview_rows], start=1):
            parts.append(f"Row {i}: {_preview_row(row, max_cell_chars)}")
        parts.append(f"Total rows: {len(rows)}")
    return "\n".join(parts) + "\n"


def build_analysis_request(
    question: str,
    dataset: Dataset,
    processed: Optional[str] = None,
    *,
    model: str = "gpt-4",
    temperature: float = 0.3,
    max_tokens: int = 1500,
    preview_rows: int = 5,
    max_cell_chars: int = 200,
    prompts: Optional[Dict[str, str]] = None,
) -> AnalysisRequest:
    p = prompts or default_prompts()
    sections = [
        p["analyst_intro"],
        "",
        "Data Context:",
        f"File: {dataset.file_name}",
        "Sheets and Data:",
        build_data_context(dataset, preview_rows=preview_rows, max_cell_chars=max_cell_chars),
    ]
    if processed and processed.strip():
        sections.extend(["Processed Data for Query:", processed.strip(), ""])
    sections.extend(
        [
            f"User Question: {question.strip()}",
            "",
            "Instructions:",
            p["analyst_instructions"],
            "",
            p["chart_format"],
            "",
            p["answer_cue"],
        ]
    )
    return AnalysisRequest(
        model=model,
        messages=[{"role": "user", "content": "\n".join(sections)}],
        temperature=float(temperature),
        max_tokens=int(max_tokens),
        meta={"has_processed": bool(processed and processed.strip()), "sheet_count": len(dataset.sheets)},
    )
