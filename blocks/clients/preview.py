"""Locating renderable HTML in stored assistant messages."""

from dataclasses import dataclass

from blocks.models.conversation import MessageOut

# Output field holding the HTML and the title used when the result has none
PREVIEW_FIELDS = (
    ("previewHtml", "Page Preview"),
    ("reportHtml", "Analysis Report"),
)


@dataclass(frozen=True)
class HtmlPreview:
    html: str
    title: str


def extract_preview(message: MessageOut) -> HtmlPreview | None:
    """First page or report HTML found in the message's tool results, if any."""
    if not message.tool_result:
        return None

    try:
        results = message.tool_results()
    except ValueError:
        return None
    if isinstance(results, dict):
        results = [results]

    for result in results:
        data = result.get("data") if isinstance(result, dict) else None
        if not isinstance(data, dict):
            continue
        for html_field, default_title in PREVIEW_FIELDS:
            if data.get(html_field):
                return HtmlPreview(html=data[html_field], title=data.get("title") or default_title)

    return None
