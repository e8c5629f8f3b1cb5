"""Shared helpers for tools that ask the model for a full HTML document."""

import re

from blocks.clients.base import ModelClient
from blocks.models.llm import Message

HTML_SYSTEM_PROMPT = (
    "You are an expert web developer. Output ONLY raw HTML code. Never use markdown code blocks. "
    "Never add explanations. Just output the HTML starting with <!DOCTYPE html>."
)

BRAND_GRADIENT = "linear-gradient(135deg, #FF6B6B 0%, #69D2E7 50%, #1ABC9C 100%)"

_OPENING_FENCE = re.compile(r"^```(?:html)?\s*", re.IGNORECASE)
_CLOSING_FENCE = re.compile(r"\s*```$")


def clean_generated_html(html: str) -> str:
    """Strip markdown fences and anything before the doctype from model output."""
    html = _OPENING_FENCE.sub("", html.strip())
    html = _CLOSING_FENCE.sub("", html).strip()

    doctype_index = html.lower().find("<!doctype")
    if doctype_index > 0:
        html = html[doctype_index:]

    return html


async def generate_html(
    client: ModelClient,
    prompt: str,
    system_prompt: str = HTML_SYSTEM_PROMPT,
    max_tokens: int = 8000,
) -> str:
    """Ask the model for a complete HTML document and return it cleaned.

    Raises:
        ValueError: If the model returned no HTML at all
    """
    response = await client.create_message(
        [Message(role="user", content=prompt)],
        system_prompt=system_prompt,
        max_tokens=max_tokens,
        temperature=0.7,
    )

    html = clean_generated_html(response.text)
    if not html:
        raise ValueError("Model returned an empty document")
    return html
