"""Data analysis report tool."""

import json
import re
from dataclasses import dataclass

from pydantic import Field

from blocks.clients.base import ModelClient
from blocks.models.tools import AnalysisType, AnalyzeDataOutput, CamelModel, ToolContext, ToolResult
from blocks.tools.base import ToolDefinition
from blocks.tools.html import BRAND_GRADIENT, generate_html
from blocks.utils.logging import get_logger

logger = get_logger(__name__)

ANALYZE_DATA_DESCRIPTION = """Analyzes data provided by the user and generates an HTML report with insights.

Use this tool when the user:
- Provides data (CSV, JSON, numbers, or text) and wants insights
- Asks for trends, patterns, or summaries
- Wants a visual report or dashboard from their data
- Needs statistical analysis or comparisons

Convert numbers mentioned in free text into CSV yourself, e.g. "rent 2400, food 850" becomes
"Category,Amount\\nRent,2400\\nFood,850"."""

REPORT_SYSTEM_PROMPT = (
    "You are an expert data analyst and web developer. Output ONLY raw HTML code. Never use markdown "
    "code blocks. Never add explanations. Calculate real statistics from the provided data. "
    "Start with <!DOCTYPE html>."
)

_DELIMITERS = re.compile(r"[,\t;]")
# Leading numeric prefix, so "2400 USD" still counts as 2400
_LEADING_NUMBER = re.compile(r"^[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?")


class AnalyzeDataInput(CamelModel):
    """Input schema for the data analysis tool."""

    data: str = Field(..., description="The data to analyze (CSV format, JSON, or comma-separated values)")
    analysis_type: AnalysisType = Field(..., description="Type of analysis to perform")
    title: str = Field(..., min_length=1, description="Title for the analysis report")
    question: str | None = Field(
        None, description="Specific question the user wants answered about the data (optional)"
    )


@dataclass
class ParsedDataInfo:
    """Shape of the data handed to the analysis tool."""

    row_count: int
    is_numeric: bool
    preview: str
    headers: list[str] | None = None


def _to_number(value: str) -> float | None:
    match = _LEADING_NUMBER.match(value.strip())
    return float(match.group()) if match else None


def parse_input_data(data: str) -> ParsedDataInfo:
    """Work out row count, headers and a preview for JSON arrays or delimited text.

    A first row made only of numbers means the whole input is a bag of numbers
    and every numeric value counts as a data point. Otherwise the first row
    holds column headers.
    """
    try:
        decoded = json.loads(data)
    except json.JSONDecodeError:
        decoded = None

    if isinstance(decoded, list):
        headers = list(decoded[0].keys()) if decoded and isinstance(decoded[0], dict) else []
        return ParsedDataInfo(
            row_count=len(decoded),
            is_numeric=False,
            headers=headers,
            preview=json.dumps(decoded[:3], indent=2),
        )

    lines = data.strip().split("\n")
    first_row = _DELIMITERS.split(lines[0])

    if all(_to_number(value) is not None for value in first_row):
        values = [
            number
            for line in lines
            for number in (_to_number(value) for value in _DELIMITERS.split(line))
            if number is not None
        ]
        shown = ", ".join(f"{value:g}" for value in values[:10])
        return ParsedDataInfo(
            row_count=len(values),
            is_numeric=True,
            preview=f"Numbers: {shown}{'...' if len(values) > 10 else ''}",
        )

    return ParsedDataInfo(
        row_count=len(lines) - 1,
        is_numeric=False,
        headers=[header.strip() for header in first_row],
        preview="\n".join(lines[:4]),
    )


def build_report_prompt(analysis_input: AnalyzeDataInput, info: ParsedDataInfo) -> str:
    """Render the report generation prompt."""
    data_info = [
        f"- {info.row_count} data points",
        f"- {'Numeric data' if info.is_numeric else 'Structured data'}",
    ]
    if info.headers:
        data_info.append(f"- Columns: {', '.join(info.headers)}")

    question_block = f"\nSPECIFIC QUESTION TO ANSWER: {analysis_input.question}" if analysis_input.question else ""
    question_requirement = (
        "\n   - A dedicated section answering the specific question" if analysis_input.question else ""
    )

    return f"""Analyze the following data and generate a COMPLETE HTML report document.

DATA:
{analysis_input.data}

DATA INFO:
{chr(10).join(data_info)}

ANALYSIS TYPE: {analysis_input.analysis_type}
REPORT TITLE: {analysis_input.title}{question_block}

REQUIREMENTS:
1. Output ONLY valid HTML, with no markdown, code fences or explanations
2. Put all CSS in a <style> tag and use the Inter font from Google Fonts
3. Use a dark theme: background #1a1a2e, cards rgba(255, 255, 255, 0.05), accents #69D2E7, #FF6B6B
   and #1ABC9C, gradient {BRAND_GRADIENT}, text #ffffff, muted text #8c8c8c
4. Build a dashboard-style report with:
   - A gradient header with the title
   - Key metrics in cards
   - Statistics actually calculated from the data (mean, median, min, max, trends)
   - An insights section with emoji bullets
   - CSS visualizations (bar charts, progress bars){question_requirement}

Generate the complete HTML document now:"""


def create_analyze_data_tool(client: ModelClient) -> ToolDefinition:
    async def analyze_data_handler(analysis_input: AnalyzeDataInput, context: ToolContext) -> ToolResult:
        info = parse_input_data(analysis_input.data)
        if info.row_count <= 0:
            return ToolResult.failure(
                "Could not parse the provided data. Please provide data in CSV, JSON, or comma-separated format."
            )

        logger.info(
            f"Running {analysis_input.analysis_type} analysis on {info.row_count} data points "
            f"for conversation {context.conversation_id}"
        )
        report_html = await generate_html(
            client,
            build_report_prompt(analysis_input, info),
            system_prompt=REPORT_SYSTEM_PROMPT,
        )

        return ToolResult(
            success=True,
            data=AnalyzeDataOutput(
                title=analysis_input.title,
                analysis_type=analysis_input.analysis_type,
                summary=f"Performed {analysis_input.analysis_type} analysis on {info.row_count} data points",
                report_html=report_html,
                message=f"Analysis complete! Generated a comprehensive {analysis_input.analysis_type} report.",
            ),
        )

    return ToolDefinition(
        name="analyze_data",
        description=ANALYZE_DATA_DESCRIPTION,
        input_schema_class=AnalyzeDataInput,
        handler=analyze_data_handler,
        failure_message="Analysis failed",
    )
