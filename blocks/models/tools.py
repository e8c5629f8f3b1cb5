"""Tool execution models: context, typed outputs and results."""

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PageType = Literal["form", "dashboard", "landing", "calculator", "list", "custom"]
ColorScheme = Literal["light", "dark", "blue", "green", "purple"]
AnalysisType = Literal["summary", "trends", "comparison", "distribution", "report"]


class CamelModel(BaseModel):
    """Base model whose fields travel as camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        """Dump to a JSON-safe dict using wire names, omitting unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class ToolContext:
    """Who and where a tool is running for."""

    user_id: str
    conversation_id: str


class CreatePageOutput(CamelModel):
    """Data returned by the create_page tool."""

    page_id: str
    title: str
    page_type: PageType
    message: str
    preview_html: str


class AnalyzeDataOutput(CamelModel):
    """Data returned by the analyze_data tool."""

    title: str
    analysis_type: AnalysisType
    summary: str
    report_html: str
    message: str


class ToolResult(CamelModel):
    """Outcome of a tool execution.

    Tools never raise: failures are reported with ``success=False`` and an
    ``error`` message so the model can react to them in its continuation.
    ``data`` is typed for known tools; the plain dict variant covers tools
    whose output shape is not modelled here.
    """

    success: bool
    data: CreatePageOutput | AnalyzeDataOutput | dict[str, Any] | None = Field(None, union_mode="left_to_right")
    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)
