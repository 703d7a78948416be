import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

from sheet_analyst.intent_router.handlers import (
    HandlerLimits,
    HandlerResult,
    handle_aggregate,
    handle_bottom_n,
    handle_compare,
    handle_extremum,
    handle_filter,
    handle_numeric_filter,
    handle_sort,
    handle_top_n,
    handle_trend,
)
from sheet_analyst.lib.dataset import Dataset, sheet_headers
from sheet_analyst.lib.numeric_conditions import extract_numeric_condition
from sheet_analyst.lib.query_signals import (
    extract_bottom_n,
    extract_top_n,
    has_aggregation_cue,
    has_chart_request,
    has_comparison_cue,
    has_filter_cue,
    has_sort_cue,
    has_superlative_cue,
    has_trend_cue,
    strip_chart_phrases,
)
from sheet_analyst.lib.route_trace import current_route_tracer

Predicate = Callable[[str, Dataset], bool]
Handler = Callable[[str, Dataset, HandlerLimits], HandlerResult]


def _safe_trunc(value: Any, limit: int = 300) -> str:
    text = str(value)
    if len(text) <= limit:
        return text
    return text[:limit] + "...(truncated)"


def has_numeric_condition(question: str, dataset: Dataset) -> bool:
    for _, rows in dataset.iter_sheets():
        if rows and extract_numeric_condition(question, sheet_headers(rows)) is not None:
            return True
    return False


def has_analytic_cue(question: str, dataset: Dataset) -> bool:
    if has_numeric_condition(question, dataset):
        return True
    text = strip_chart_phrases(question)
    return any(
        (
            extract_top_n(text) is not None,
            extract_bottom_n(text) is not None,
            has_superlative_cue(text),
            has_filter_cue(text),
            has_aggregation_cue(text),
            has_comparison_cue(text),
            has_trend_cue(text),
            has_sort_cue(text),
        )
    )


def is_bare_chart_request(question: str, dataset: Dataset) -> bool:
    return has_chart_request(question) and not has_analytic_cue(question, dataset)


@dataclass(frozen=True)
class IntentRule:
    """One routing rule; a rule without a handler stops routing with no pre-processing."""

    name: str
    predicate: Predicate
    handler: Optional[Handler] = None


# Evaluated top to bottom; the first applicable handler wins.
DEFAULT_RULES: Sequence[IntentRule] = (
    IntentRule("bare_chart_request", is_bare_chart_request, None),
    IntentRule("numeric_filter", has_numeric_condition, handle_numeric_filter),
    IntentRule("top_n", lambda q, _: extract_top_n(q) is not None, handle_top_n),
    IntentRule("bottom_n", lambda q, _: extract_bottom_n(q) is not None, handle_bottom_n),
    IntentRule("extremum", lambda q, _: has_superlative_cue(q), handle_extremum),
    IntentRule("filter", lambda q, _: has_filter_cue(q), handle_filter),
    IntentRule("aggregate", lambda q, _: has_aggregation_cue(q), handle_aggregate),
    IntentRule("compare", lambda q, _: has_comparison_cue(q), handle_compare),
    IntentRule("trend", lambda q, _: has_trend_cue(q), handle_trend),
    IntentRule("sort", lambda q, _: has_sort_cue(q), handle_sort),
)


@dataclass
class RouteDecision:
    intent: Optional[str]
    result: Optional[HandlerResult] = None
    reason: str = ""
    tried: List[str] = field(default_factory=list)

    @property
    def hit(self) -> bool:
        return self.result is not None and self.result.applicable


class IntentRouterConfig:
    def __init__(self, **kwargs: Any) -> None:
        for k, v in kwargs.items():
            setattr(self, k, v)


class IntentRouter:
    def __init__(
        self,
        config: Optional[IntentRouterConfig] = None,
        rules: Optional[Sequence[IntentRule]] = None,
    ) -> None:
        self.config = config or IntentRouterConfig()
        self.rules: List[IntentRule] = list(rules if rules is not None else DEFAULT_RULES)

    def _int_config(self, name: str, env_name: str, default: int) -> int:
        raw = getattr(self.config, name, None)
        if raw is None:
            raw = os.getenv(env_name, str(default))
        try:
            val = int(raw)
        except (TypeError, ValueError):
            val = int(default)
        return max(1, val)

    @property
    def limits(self) -> HandlerLimits:
        return HandlerLimits(
            result_sample_rows=self._int_config("result_sample_rows", "SHEET_ANALYST_RESULT_SAMPLE_ROWS", 5),
            sort_preview_rows=self._int_config("sort_preview_rows", "SHEET_ANALYST_SORT_PREVIEW_ROWS", 20),
            trend_preview_points=self._int_config("trend_preview_points", "SHEET_ANALYST_TREND_PREVIEW_POINTS", 10),
        )

    def route(self, question: str, dataset: Dataset) -> RouteDecision:
        q = (question or "").strip()
        decision = self._route(q, dataset)

        if decision.hit:
            logging.info(
                "event=intent_route status=hit intent=%s sheet_count=%s tried=%s query_preview=%s",
                decision.intent,
                len(decision.result.findings),
                ",".join(decision.tried),
                _safe_trunc(q, 200),
            )
        else:
            logging.info(
                "event=intent_route status=miss reason=%s tried=%s query_preview=%s",
                decision.reason,
                ",".join(decision.tried),
                _safe_trunc(q, 200),
            )

        tracer = current_route_tracer()
        if tracer is not None:
            tracer.record_stage(
                stage_key="intent_route",
                stage_name="Intent routing",
                purpose="Classify the question and run the matching deterministic handler.",
                input_payload={"question": q, "sheets": list(dataset.sheets.keys())},
                output_payload=decision.result.text if decision.hit else None,
                processing_summary=f"intent={decision.intent or 'none'} reason={decision.reason}",
                status="ok" if decision.hit else "skipped",
                details={"tried": decision.tried, "intent": decision.intent},
            )
        return decision

    def _route(self, question: str, dataset: Dataset) -> RouteDecision:
        if not question:
            return RouteDecision(intent=None, reason="empty_question")
        limits = self.limits
        tried: List[str] = []
        for rule in self.rules:
            if not rule.predicate(question, dataset):
                continue
            tried.append(rule.name)
            if rule.handler is None:
                return RouteDecision(intent=None, reason=rule.name, tried=tried)
            result = rule.handler(question, dataset, limits)
            if result.applicable:
                return RouteDecision(intent=result.intent, result=result, reason=rule.name, tried=tried)
            logging.info(
                "event=intent_rule status=not_applicable rule=%s reason=%s",
                rule.name,
                result.reason,
            )
        return RouteDecision(intent=None, reason="no_rule_applied" if tried else "no_rule_matched", tried=tried)
