"""Page generation tool."""

from dataclasses import dataclass

from cuid2 import cuid_wrapper
from pydantic import Field, field_validator

from blocks.clients.base import ModelClient
from blocks.models.conversation import PageRecord
from blocks.models.tools import CamelModel, ColorScheme, CreatePageOutput, PageType, ToolContext, ToolResult
from blocks.services.conversation_store import ConversationStore
from blocks.tools.base import ToolDefinition
from blocks.tools.html import BRAND_GRADIENT, generate_html
from blocks.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()

CREATE_PAGE_DESCRIPTION = """Creates a functional page or mini-app based on user requirements.

Use this tool when the user wants to build something visual, such as:
- A form (contact, feedback, signup, survey)
- A dashboard or data display
- A landing page or marketing page
- A calculator or interactive tool
- A list, table, or card layout
- Any custom UI component

The tool generates a complete, styled HTML document tailored to the description."""


@dataclass(frozen=True)
class Palette:
    """Brand colours used when the user did not ask for specific ones."""

    background: str
    card: str
    text: str
    accent: str
    secondary: str
    tertiary: str
    muted: str
    border: str


PALETTES: dict[str, Palette] = {
    "dark": Palette(
        "#1a1a2e", "rgba(255, 255, 255, 0.05)", "#ffffff", "#69D2E7",
        "#FF6B6B", "#1ABC9C", "#8c8c8c", "rgba(255, 255, 255, 0.1)",
    ),
    "light": Palette("#ffffff", "#fafafa", "#1a1a2e", "#69D2E7", "#FF6B6B", "#1ABC9C", "#5c5c6d", "#e8e8e8"),
    "blue": Palette(
        "#1a1a2e", "rgba(105, 210, 231, 0.1)", "#ffffff", "#69D2E7",
        "#5DADE2", "#1ABC9C", "#b3b3b3", "rgba(105, 210, 231, 0.3)",
    ),
    "green": Palette(
        "#1a1a2e", "rgba(26, 188, 156, 0.1)", "#ffffff", "#1ABC9C",
        "#69D2E7", "#00C853", "#b3b3b3", "rgba(26, 188, 156, 0.3)",
    ),
    "purple": Palette(
        "#1a1a2e", "rgba(255, 107, 107, 0.1)", "#ffffff", "#FF6B6B",
        "#69D2E7", "#1ABC9C", "#b3b3b3", "rgba(255, 107, 107, 0.3)",
    ),
}  # fmt: skip


class CreatePageInput(CamelModel):
    """Input schema for the page generation tool."""

    page_type: PageType = Field(..., description="The type of page to create")
    title: str = Field(..., min_length=1, max_length=200, description="The title or name of the page")
    description: str = Field(
        ...,
        min_length=1,
        description="Detailed description of what the page should contain and do",
        examples=["A contact form with name, email and message fields and a dark theme"],
    )
    color_scheme: ColorScheme = Field("dark", description="Color scheme for the page (defaults to dark)")

    @field_validator("title", "description")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if v.isspace():
            raise ValueError("Value cannot be whitespace only")
        return v.strip()


def build_page_prompt(page_input: CreatePageInput) -> str:
    """Render the generation prompt for a page request."""
    colors = PALETTES.get(page_input.color_scheme, PALETTES["dark"])

    return f"""Create a beautiful, functional HTML page. Output ONLY the complete HTML document.

PAGE TYPE: {page_input.page_type}
TITLE: {page_input.title}

USER'S REQUIREMENTS (FOLLOW THESE EXACTLY):
{page_input.description}

DEFAULT COLOR SCHEME (use ONLY if the requirements name no colors):
- Background: {colors.background}
- Card/Container background: {colors.card}
- Text: {colors.text}
- Primary accent: {colors.accent}
- Secondary accent: {colors.secondary}
- Tertiary accent: {colors.tertiary}
- Gradient: {BRAND_GRADIENT}
- Muted text: {colors.muted}
- Borders: {colors.border}

REQUIREMENTS:
1. Colors, fonts or styles given in the user's requirements take priority over the defaults
2. Output ONLY valid HTML, with no markdown, code fences or explanations
3. Put all CSS in a <style> tag in the <head>
4. Put any JavaScript in <script> tags at the end of <body>
5. Use Google Fonts (Inter unless another font was requested)
6. Make it responsive and mobile-friendly, with subtle animations and hover effects
7. Make forms and buttons work with JavaScript (use alerts for submissions)
8. Include realistic placeholder content matching the description

Generate the complete HTML document now:"""


def create_create_page_tool(client: ModelClient, store: ConversationStore) -> ToolDefinition:
    async def create_page_handler(page_input: CreatePageInput, context: ToolContext) -> ToolResult:
        html = await generate_html(client, build_page_prompt(page_input))

        page = PageRecord(
            id=cuid(),
            user_id=context.user_id,
            title=page_input.title,
            page_type=page_input.page_type,
            description=page_input.description,
            html_content=html,
            color_scheme=page_input.color_scheme,
        )
        store.save_page(page)
        logger.info(f"Created page {page.id} ({page.page_type}) for user {context.user_id}")

        return ToolResult(
            success=True,
            data=CreatePageOutput(
                page_id=page.id,
                title=page.title,
                page_type=page_input.page_type,
                message=f'Page "{page.title}" created successfully!',
                preview_html=html,
            ),
        )

    return ToolDefinition(
        name="create_page",
        description=CREATE_PAGE_DESCRIPTION,
        input_schema_class=CreatePageInput,
        handler=create_page_handler,
        failure_message="Failed to create page",
    )
