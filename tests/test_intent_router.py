from sheet_analyst.intent_router.handlers import HandlerResult, handle_aggregate
from sheet_analyst.intent_router.intent_router import (
    IntentRouter,
    IntentRouterConfig,
    IntentRule,
    is_bare_chart_request,
)
from sheet_analyst.lib.dataset import Dataset
from sheet_analyst.lib.route_trace import RouteTracer, reset_active_route_tracer, set_active_route_tracer

ROWS = [
    {"Name": "A", "Attack": 10},
    {"Name": "B", "Attack": 50},
    {"Name": "C", "Attack": 30},
    {"Name": "D", "Attack": 5},
]


def _dataset() -> Dataset:
    return Dataset(file_name="pokemon.xlsx", sheets={"Pokemon": list(ROWS)})


def _route(question: str):
    return IntentRouter(IntentRouterConfig()).route(question, _dataset())


def test_top_n_route() -> None:
    decision = _route("top 3 by Attack")
    assert decision.hit
    assert decision.intent == "top_n"


def test_numeric_condition_runs_before_top_n() -> None:
    decision = _route("top 3 where Attack above 20")
    assert decision.intent == "filter"
    assert decision.reason == "numeric_filter"


def test_bottom_n_and_extremum_routes() -> None:
    assert _route("bottom 2 by Attack").intent == "bottom_n"
    assert _route("who has the highest Attack").intent == "extremum"


def test_keyword_routes_follow_priority() -> None:
    assert _route("what is the total Attack").intent == "aggregate"
    assert _route("sort by Attack").intent == "sort"
    assert _route("show all rows").intent == "filter"


def test_bare_chart_request_is_not_preprocessed() -> None:
    for question in ("show a pie chart", "change it to a bar chart", "visualize this"):
        decision = _route(question)
        assert decision.intent is None
        assert decision.reason == "bare_chart_request"
        assert not decision.hit


def test_chart_request_with_analytic_cue_still_routes() -> None:
    assert not is_bare_chart_request("bar chart of top 3 by Attack", _dataset())
    assert _route("bar chart of top 3 by Attack").intent == "top_n"


def test_unmatched_question_gets_no_preprocessing() -> None:
    decision = _route("hello there")
    assert decision.intent is None
    assert decision.reason == "no_rule_matched"
    assert decision.tried == []


def test_not_applicable_handler_falls_through() -> None:
    rules = [
        IntentRule("never", lambda q, d: True, lambda q, d, limits: HandlerResult.not_applicable("never", "nope")),
        IntentRule("always", lambda q, d: True, handle_aggregate),
    ]
    decision = IntentRouter(rules=rules).route("anything", _dataset())
    assert decision.intent == "aggregate"
    assert decision.tried == ["never", "always"]


def test_router_limits_come_from_config() -> None:
    router = IntentRouter(IntentRouterConfig(result_sample_rows=2, sort_preview_rows=3, trend_preview_points=4))
    limits = router.limits
    assert (limits.result_sample_rows, limits.sort_preview_rows, limits.trend_preview_points) == (2, 3, 4)


def test_route_records_trace_stage() -> None:
    tracer = RouteTracer(question_id="q-1")
    token = set_active_route_tracer(tracer)
    try:
        _route("top 3 by Attack")
    finally:
        reset_active_route_tracer(token)
    stages = tracer.to_dict()["stages"]
    assert [s["stage_key"] for s in stages] == ["intent_route"]
    assert stages[0]["details"]["intent"] == "top_n"
