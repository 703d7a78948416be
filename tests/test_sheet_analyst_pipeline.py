import asyncio
import json
import logging
import time
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

from sheet_analyst.lib.dataset import Dataset
from sheet_analyst.lib.errors import ConfigurationError, UpstreamError
from sheet_analyst.sheet_analyst_pipeline import SheetAnalyst

ROWS = [
    {"Name": "A", "Attack": 10},
    {"Name": "B", "Attack": 50},
    {"Name": "C", "Attack": 30},
    {"Name": "D", "Attack": 5},
]

CHART_REPLY = (
    "B, C and A have the highest Attack.\n"
    'CHART_SPEC: {"type": "bar", "title": "Top 3", "data": [{"Name": "B", "Attack": 50}], '
    '"xKey": "Name", "yKey": "Attack"}'
)


class _FakeCompletions:
    def __init__(self, reply: str = CHART_REPLY, error: Exception = None, delay_s: float = 0.0) -> None:
        self.reply = reply
        self.error = error
        self.delay_s = delay_s
        self.calls: List[Dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.reply))])


def _client(**kwargs: Any) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=_FakeCompletions(**kwargs)))


def _valves(**overrides: Any) -> SheetAnalyst.Valves:
    base = {"openai_api_key": "", "route_trace_enabled": False, "route_trace_sink_url": "", "route_trace_local_path": ""}
    base.update(overrides)
    return SheetAnalyst.Valves(**base)


def _dataset() -> Dataset:
    return Dataset(file_name="pokemon.xlsx", sheets={"Pokemon": list(ROWS)})


def test_missing_key_without_client_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        SheetAnalyst(valves=_valves())


def test_analyze_routes_prompts_and_parses() -> None:
    client = _client()
    analyst = SheetAnalyst(valves=_valves(), client=client)
    answer = asyncio.run(analyst.analyze("top 3 by Attack", _dataset()))

    assert answer.intent == "top_n"
    assert answer.text == "B, C and A have the highest Attack."
    assert answer.chart is not None
    assert answer.chart.x_key == "Name"

    calls = client.chat.completions.calls
    assert len(calls) == 1
    assert calls[0]["model"] == "gpt-4"
    assert calls[0]["temperature"] == 0.3
    assert calls[0]["max_tokens"] == 1500
    prompt = calls[0]["messages"][0]["content"]
    assert "Processed Data for Query:" in prompt
    assert "Top 3 by Attack:" in prompt
    assert "1. B: 50" in prompt


def test_analyze_accepts_wire_dataset() -> None:
    analyst = SheetAnalyst(valves=_valves(), client=_client(reply="Plain answer."))
    answer = asyncio.run(analyst.analyze("hello", {"fileName": "x.csv", "sheets": {"S": ROWS}}))
    assert answer.text == "Plain answer."
    assert answer.chart is None
    assert answer.intent is None


def test_client_failure_becomes_upstream_error() -> None:
    analyst = SheetAnalyst(valves=_valves(), client=_client(error=RuntimeError("boom")))
    with pytest.raises(UpstreamError) as exc_info:
        asyncio.run(analyst.analyze("top 3 by Attack", _dataset()))
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert "boom" in str(exc_info.value)


def test_timeout_becomes_upstream_error() -> None:
    analyst = SheetAnalyst(valves=_valves(timeout_s=1), client=_client(delay_s=5.0))
    with pytest.raises(UpstreamError):
        asyncio.run(analyst.analyze("top 3 by Attack", _dataset()))


def test_build_request_uses_valves() -> None:
    analyst = SheetAnalyst(valves=_valves(model="gpt-4o-mini", max_tokens=300, preview_rows=2), client=_client())
    decision, request = analyst.build_request("sort by Attack", _dataset())
    assert decision.intent == "sort"
    assert request.model == "gpt-4o-mini"
    assert request.max_tokens == 300
    assert "Row 2:" in request.prompt
    assert "Row 3:" not in request.prompt


def test_trace_is_persisted_with_all_stages(tmp_path) -> None:
    path = tmp_path / "traces.jsonl"
    analyst = SheetAnalyst(valves=_valves(route_trace_enabled=True, route_trace_local_path=str(path)), client=_client())
    asyncio.run(analyst.analyze("top 3 by Attack", _dataset()))

    deadline = time.time() + 5
    while time.time() < deadline:
        if path.exists() and path.read_text(encoding="utf-8").endswith("\n"):
            break
        time.sleep(0.02)
    trace = json.loads(path.read_text(encoding="utf-8").splitlines()[0])
    assert trace["status"] == "ok"
    assert trace["final"] is True
    assert [s["stage_key"] for s in trace["stages"]] == [
        "intent_route",
        "prompt_build",
        "llm_analysis_call",
        "response_parse",
    ]


def test_log_lines_carry_question_id(caplog) -> None:
    caplog.set_level(logging.INFO)
    analyst = SheetAnalyst(valves=_valves(), client=_client())
    asyncio.run(analyst.analyze("top 3 by Attack", _dataset()))
    done = [r.getMessage() for r in caplog.records if "event=analyze_done" in r.getMessage()]
    assert done
    assert done[0].startswith("question_id=")
    assert "question_id=-" not in done[0]
