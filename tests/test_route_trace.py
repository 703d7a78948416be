import json

import requests

from sheet_analyst.lib import route_trace
from sheet_analyst.lib.route_trace import (
    RouteTracer,
    current_route_tracer,
    redact_payload,
    reset_active_route_tracer,
    set_active_route_tracer,
    summarize_payload,
)


def test_redact_payload_masks_secret_keys_and_tokens() -> None:
    out = redact_payload(
        {
            "api_key": "super-secret",
            "note": "Bearer abc.def.ghi",
            "nested": [{"raw": "sk-abcdefghijklmnopqrstuvwxyz123"}],
            "safe": 3,
        }
    )
    assert out["api_key"] == "[REDACTED]"
    assert out["note"] == "Bearer [REDACTED]"
    assert out["nested"][0]["raw"] == "sk-[REDACTED]"
    assert out["safe"] == 3


def test_summarize_payload_reports_shape_only() -> None:
    assert summarize_payload(None) == {"kind": "none"}
    text = summarize_payload("hello world")
    assert text["kind"] == "text"
    assert text["chars"] == 11
    obj = summarize_payload({"question": "q", "sheets": ["A"]})
    assert obj["kind"] == "json_object"
    assert obj["keys"] == ["question", "sheets"]
    assert summarize_payload([1, 2, 3])["items"] == 3


def test_stages_are_ordered_and_timed() -> None:
    tracer = RouteTracer(question_id="q-1", meta={"api_key": "x", "model": "gpt-4"})
    tracer.record_stage(stage_key="intent_route", stage_name="Intent routing", purpose="p", output_payload="text")
    sid = tracer.start_stage(stage_key="llm_analysis_call", stage_name="Model call", purpose="p")
    tracer.end_stage(sid, status="error", error={"type": "RuntimeError", "message": "boom"})

    snapshot = tracer.to_dict()
    assert snapshot["question_id"] == "q-1"
    assert snapshot["meta"] == {"api_key": "[REDACTED]", "model": "gpt-4"}
    stages = snapshot["stages"]
    assert [s["stage_id"] for s in stages] == ["1:intent_route", "2:llm_analysis_call"]
    assert stages[1]["status"] == "error"
    assert stages[1]["error"]["message"] == "boom"
    assert stages[1]["duration_ms"] is not None


def test_finalize_appends_json_line(tmp_path) -> None:
    path = tmp_path / "nested" / "traces.jsonl"
    tracer = RouteTracer(question_id="q-2", persist_path=str(path))
    tracer.record_stage(stage_key="intent_route", stage_name="Intent routing", purpose="p")
    tracer.finalize("ok").join(timeout=5)

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    payload = json.loads(lines[0])
    assert payload["question_id"] == "q-2"
    assert payload["status"] == "ok"
    assert payload["final"] is True


def test_sink_failure_is_not_raised(monkeypatch) -> None:
    calls = []

    def _boom(url, **kwargs):
        calls.append((url, kwargs["headers"]))
        raise requests.ConnectionError("down")

    monkeypatch.setattr(route_trace.requests, "post", _boom)
    tracer = RouteTracer(question_id="q-3", sink_url="http://trace.local/v1/traces", sink_api_key="k")
    tracer.publish_snapshot(final=True)
    assert calls[0][0] == "http://trace.local/v1/traces"
    assert calls[0][1]["Authorization"] == "Bearer k"


def test_active_tracer_context() -> None:
    assert current_route_tracer() is None
    tracer = RouteTracer()
    token = set_active_route_tracer(tracer)
    try:
        assert current_route_tracer() is tracer
    finally:
        reset_active_route_tracer(token)
    assert current_route_tracer() is None
