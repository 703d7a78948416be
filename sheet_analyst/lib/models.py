import datetime as dt
import uuid
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

CHART_TYPES = ("bar", "line", "pie", "area")
ChartType = Literal["bar", "line", "pie", "area"]
Role = Literal["user", "assistant"]


def _utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


class ChartPayload(BaseModel):
    """Rendering-agnostic chart description; wire field names are camelCase."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: ChartType
    title: Optional[str] = None
    data: List[Dict[str, Any]] = Field(default_factory=list)
    x_key: Optional[str] = Field(default=None, alias="xKey")
    y_key: Optional[str] = Field(default=None, alias="yKey")
    name_key: Optional[str] = Field(default=None, alias="nameKey")
    data_key: Optional[str] = Field(default=None, alias="dataKey")
    x_label: Optional[str] = Field(default=None, alias="xLabel")
    y_label: Optional[str] = Field(default=None, alias="yLabel")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class AnalysisAnswer(BaseModel):
    text: str
    chart: Optional[ChartPayload] = None
    intent: Optional[str] = None


class Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: Role
    content: str
    timestamp: str = Field(default_factory=_utc_now_iso)
    chart: Optional[ChartPayload] = None
    visible: bool = False
    chart_type_override: Optional[ChartType] = Field(default=None, alias="chartTypeOverride")
    is_error: bool = Field(default=False, alias="isError")

    @property
    def effective_chart_type(self) -> Optional[str]:
        if self.chart is None:
            return None
        return self.chart_type_override or self.chart.type

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
