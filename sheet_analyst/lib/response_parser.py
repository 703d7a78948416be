"""
Split a model reply into answer text and an optional chart.

The reply protocol is a plain-text boundary: everything before the first
``CHART_SPEC:`` is the answer, the first JSON object after it is the chart.
The marker could in principle occur inside a normal answer; that case is
indistinguishable from a chart block and falls back to text-only when the
suffix does not parse.
"""
import json
import logging
import re
from typing import Any, Dict, Optional

from pydantic import ValidationError

from sheet_analyst.lib.errors import MalformedChartSpec
from sheet_analyst.lib.models import AnalysisAnswer, ChartPayload
from sheet_analyst.lib.pipeline_prompts import CHART_SPEC_SENTINEL
from sheet_analyst.lib.route_trace import current_route_tracer

CANONICAL_CHART_FIELDS = ("type", "title", "data", "xKey", "yKey", "nameKey", "dataKey", "xLabel", "yLabel")


def _safe_trunc(value: Any, limit: int = 300) -> str:
    text = str(value)
    if len(text) <= limit:
        return text
    return text[:limit] + "...(truncated)"


def _extract_json_candidate(text: str) -> Optional[str]:
    s = (text or "").strip()
    if not s:
        return None
    # Only a fence that opens the chart block wraps it; later fences are prose.
    if s.startswith("```"):
        fence = re.match(r"```(?:json)?\s*(.*?)\s*```", s, re.S | re.I)
        if fence:
            s = (fence.group(1) or "").strip()
    if not s:
        return None

    start = s.find("{")
    while start != -1:
        depth = 0
        in_str = False
        escaped = False
        for i in range(start, len(s)):
            ch = s[i]
            if in_str:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_str = False
                continue
            if ch == '"':
                in_str = True
                continue
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return s[start : i + 1]
        start = s.find("{", start + 1)
    return None


def normalize_chart_spec(spec: Any) -> ChartPayload:
    """Map a decoded chart object onto the canonical payload, or raise MalformedChartSpec."""
    if not isinstance(spec, dict):
        raise MalformedChartSpec(f"chart spec is {type(spec).__name__}, expected object")
    merged: Dict[str, Any] = {}
    # Older replies nest the axis keys under "config".
    nested = spec.get("config")
    if isinstance(nested, dict):
        merged.update(nested)
    merged.update(spec)
    fields = {k: merged[k] for k in CANONICAL_CHART_FIELDS if merged.get(k) is not None}
    if isinstance(fields.get("type"), str):
        fields["type"] = fields["type"].strip().lower()
    if "data" not in fields:
        raise MalformedChartSpec("chart spec has no data")
    try:
        return ChartPayload.model_validate(fields)
    except ValidationError as exc:
        raise MalformedChartSpec(str(exc)) from exc


def _parse_chart(suffix: str) -> ChartPayload:
    candidate = _extract_json_candidate(suffix)
    if candidate is None:
        raise MalformedChartSpec("no JSON object after sentinel")
    try:
        spec = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise MalformedChartSpec(f"invalid JSON: {exc}") from exc
    return normalize_chart_spec(spec)


def parse_response(response: str) -> AnalysisAnswer:
    raw = response or ""
    idx = raw.find(CHART_SPEC_SENTINEL)
    status = "ok"
    if idx == -1:
        answer = AnalysisAnswer(text=raw.strip())
    else:
        try:
            chart = _parse_chart(raw[idx + len(CHART_SPEC_SENTINEL) :])
            answer = AnalysisAnswer(text=raw[:idx].strip(), chart=chart)
        except MalformedChartSpec as exc:
            status = "error"
            logging.warning(
                "event=chart_spec_parse status=error error=%s response_preview=%s",
                _safe_trunc(exc, 300),
                _safe_trunc(raw[idx:], 300),
            )
            answer = AnalysisAnswer(text=raw)

    tracer = current_route_tracer()
    if tracer is not None:
        tracer.record_stage(
            stage_key="response_parse",
            stage_name="Response parsing",
            purpose="Split the model reply into answer text and chart payload.",
            input_payload=raw,
            output_payload=answer.chart.to_wire() if answer.chart is not None else None,
            status=status,
            processing_summary=f"sentinel_at={idx} chart={'yes' if answer.chart else 'no'}",
        )
    return answer
