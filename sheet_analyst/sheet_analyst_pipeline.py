import asyncio
import contextvars
import logging
import os
import time
import uuid
from typing import Any, Mapping, Optional, Tuple, Union

from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from sheet_analyst.intent_router.intent_router import IntentRouter, IntentRouterConfig, RouteDecision
from sheet_analyst.lib.dataset import Dataset
from sheet_analyst.lib.errors import ConfigurationError, UpstreamError
from sheet_analyst.lib.models import AnalysisAnswer
from sheet_analyst.lib.pipeline_prompts import load_prompts
from sheet_analyst.lib.prompt_builder import AnalysisRequest, build_analysis_request
from sheet_analyst.lib.response_parser import parse_response
from sheet_analyst.lib.route_trace import (
    RouteTracer,
    current_route_tracer,
    reset_active_route_tracer,
    set_active_route_tracer,
)

_QUESTION_ID_CTX: contextvars.ContextVar[str] = contextvars.ContextVar("sheet_analyst_question_id", default="-")


class _QuestionLoggingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "_question_id_injected", False):
            return True
        question_id = (_QUESTION_ID_CTX.get() or "-").strip() or "-"
        record.msg = f"question_id={question_id} {record.msg}"
        record._question_id_injected = True
        return True


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _safe_trunc(value: Any, limit: int = 300) -> str:
    text = str(value)
    if len(text) <= limit:
        return text
    return text[:limit] + "...(truncated)"


def _completion_text(completion: Any) -> str:
    choices = getattr(completion, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    return str(getattr(message, "content", None) or "")


class SheetAnalyst(object):
    class Valves(BaseModel):
        openai_api_key: str = Field(default=os.getenv("OPENAI_API_KEY", ""))
        openai_base_url: str = Field(default=os.getenv("OPENAI_BASE_URL", ""))
        model: str = Field(default=os.getenv("SHEET_ANALYST_MODEL", "gpt-4"))
        temperature: float = Field(default=_env_float("SHEET_ANALYST_TEMPERATURE", 0.3), ge=0.0, le=2.0)
        max_tokens: int = Field(default=_env_int("SHEET_ANALYST_MAX_TOKENS", 1500), ge=1)
        timeout_s: int = Field(default=_env_int("SHEET_ANALYST_TIMEOUT_S", 60), ge=1)

        preview_rows: int = Field(default=_env_int("SHEET_ANALYST_PREVIEW_ROWS", 5), ge=1)
        max_cell_chars: int = Field(default=_env_int("SHEET_ANALYST_MAX_CELL_CHARS", 200), ge=10)
        result_sample_rows: int = Field(default=_env_int("SHEET_ANALYST_RESULT_SAMPLE_ROWS", 5), ge=1)
        sort_preview_rows: int = Field(default=_env_int("SHEET_ANALYST_SORT_PREVIEW_ROWS", 20), ge=1)
        trend_preview_points: int = Field(default=_env_int("SHEET_ANALYST_TREND_PREVIEW_POINTS", 10), ge=1)
        prompts_path: str = Field(default=os.getenv("SHEET_ANALYST_PROMPTS_PATH", ""))

        route_trace_enabled: bool = Field(default=_env_bool("ROUTE_TRACE_ENABLED", True))
        route_trace_local_path: str = Field(default=os.getenv("ROUTE_TRACE_LOCAL_PATH", ""))
        route_trace_sink_url: str = Field(default=os.getenv("ROUTE_TRACE_SINK_URL", ""))
        route_trace_sink_api_key: str = Field(default=os.getenv("ROUTE_TRACE_SINK_API_KEY", ""))
        route_trace_max_payload_chars: int = Field(default=_env_int("ROUTE_TRACE_MAX_PAYLOAD_CHARS", 4000), ge=256)

        debug: bool = Field(default=_env_bool("SHEET_ANALYST_DEBUG", False))

    def __init__(
        self,
        valves: Optional["SheetAnalyst.Valves"] = None,
        client: Any = None,
        router: Optional[IntentRouter] = None,
    ) -> None:
        self.valves = valves or self.Valves()
        logging.basicConfig(level=logging.INFO)
        root_logger = logging.getLogger()
        if not any(isinstance(f, _QuestionLoggingFilter) for f in root_logger.filters):
            root_logger.addFilter(_QuestionLoggingFilter())

        if client is None:
            if not self.valves.openai_api_key:
                raise ConfigurationError("OpenAI API key not found. Set OPENAI_API_KEY in the environment.")
            client = AsyncOpenAI(
                api_key=self.valves.openai_api_key,
                base_url=self.valves.openai_base_url or None,
                timeout=float(self.valves.timeout_s),
                max_retries=0,
            )
        self._client = client
        self._prompts = load_prompts(self.valves.prompts_path)
        self.router = router or IntentRouter(
            IntentRouterConfig(
                result_sample_rows=self.valves.result_sample_rows,
                sort_preview_rows=self.valves.sort_preview_rows,
                trend_preview_points=self.valves.trend_preview_points,
            )
        )
        logging.info(
            "event=sheet_analyst_init model=%s base_url_set=%s prompts_path=%s route_trace_enabled=%s",
            self.valves.model,
            bool(self.valves.openai_base_url),
            self.valves.prompts_path or "-",
            self.valves.route_trace_enabled,
        )

    def build_request(self, question: str, dataset: Dataset) -> Tuple[RouteDecision, AnalysisRequest]:
        """Route the question and assemble the model request. No network."""
        decision = self.router.route(question, dataset)
        processed = decision.result.text if decision.hit else None
        request = build_analysis_request(
            question,
            dataset,
            processed,
            model=self.valves.model,
            temperature=self.valves.temperature,
            max_tokens=self.valves.max_tokens,
            preview_rows=self.valves.preview_rows,
            max_cell_chars=self.valves.max_cell_chars,
            prompts=self._prompts,
        )
        tracer = current_route_tracer()
        if tracer is not None:
            tracer.record_stage(
                stage_key="prompt_build",
                stage_name="Prompt assembly",
                purpose="Serialize sheet previews, the computed block and instructions into one request.",
                input_payload={"intent": decision.intent, "processed": processed},
                output_payload=request.prompt,
                processing_summary=f"model={request.model} max_tokens={request.max_tokens}",
            )
        if self.valves.debug:
            logging.info("event=prompt_build prompt_preview=%s", _safe_trunc(request.prompt, 1200))
        return decision, request

    def _new_tracer(self, question_id: str, question: str, dataset: Dataset) -> Optional[RouteTracer]:
        if not self.valves.route_trace_enabled:
            return None
        return RouteTracer(
            question_id=question_id,
            sink_url=self.valves.route_trace_sink_url,
            sink_api_key=self.valves.route_trace_sink_api_key,
            max_payload_chars=self.valves.route_trace_max_payload_chars,
            persist_path=self.valves.route_trace_local_path,
            meta={
                "file_name": dataset.file_name,
                "sheet_count": len(dataset.sheets),
                "total_rows": dataset.total_rows,
                "question_chars": len(question or ""),
                "model": self.valves.model,
            },
        )

    async def _complete(self, request: AnalysisRequest) -> str:
        tracer = current_route_tracer()
        stage_id = None
        if tracer is not None:
            stage_id = tracer.start_stage(
                stage_key="llm_analysis_call",
                stage_name="Model analysis call",
                purpose="Ask the model to answer from the context and computed block.",
                input_payload=request.prompt,
                details={"model": request.model, "temperature": request.temperature},
            )
        started = time.monotonic()
        try:
            completion = await asyncio.wait_for(
                self._client.chat.completions.create(**request.to_kwargs()),
                timeout=float(self.valves.timeout_s),
            )
        except Exception as exc:
            logging.error(
                "event=llm_analysis_call status=error error_type=%s error=%s",
                type(exc).__name__,
                _safe_trunc(exc, 500),
            )
            if tracer is not None and stage_id is not None:
                tracer.end_stage(stage_id, status="error", error={"type": type(exc).__name__, "message": str(exc)})
            raise UpstreamError(f"Failed to analyze data: {str(exc) or type(exc).__name__}") from exc

        content = _completion_text(completion)
        elapsed_ms = round((time.monotonic() - started) * 1000.0, 1)
        logging.info(
            "event=llm_analysis_call status=ok elapsed_ms=%s response_chars=%s",
            elapsed_ms,
            len(content),
        )
        if tracer is not None and stage_id is not None:
            tracer.end_stage(stage_id, status="ok", output_payload=content)
        return content

    async def analyze(self, question: str, dataset: Union[Dataset, Mapping[str, Any]]) -> AnalysisAnswer:
        if not isinstance(dataset, Dataset):
            dataset = Dataset.from_dict(dataset)
        question_id = uuid.uuid4().hex[:16]
        id_token = _QUESTION_ID_CTX.set(question_id)
        tracer = self._new_tracer(question_id, question, dataset)
        tracer_token = set_active_route_tracer(tracer)
        status = "error"
        try:
            logging.info(
                "event=analyze_start sheets=%s total_rows=%s query_preview=%s",
                len(dataset.sheets),
                dataset.total_rows,
                _safe_trunc((question or "").strip(), 200),
            )
            decision, request = self.build_request(question, dataset)
            content = await self._complete(request)
            answer = parse_response(content)
            answer.intent = decision.intent
            status = "ok"
            logging.info(
                "event=analyze_done intent=%s chart=%s text_chars=%s",
                decision.intent or "none",
                answer.chart.type if answer.chart is not None else "none",
                len(answer.text),
            )
            return answer
        finally:
            if tracer is not None:
                tracer.finalize(status)
            reset_active_route_tracer(tracer_token)
            _QUESTION_ID_CTX.reset(id_token)
