"""CLI output formatters for chat events.

Rich rendering (default) and one-JSON-object-per-line output (--json).
"""

import json

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from querydesk.orchestrator.events import (
    ConversationSummary,
    ErrorEvent,
    OrchestrationEvent,
    StepProgress,
    TextUpdate,
    ToolExecution,
)

console = Console()

_RESULT_PREVIEW_CHARS = 300


def _preview(text: str, limit: int = _RESULT_PREVIEW_CHARS) -> str:
    return text if len(text) <= limit else text[:limit] + "…"


def format_tool_execution(event: ToolExecution) -> Table:
    """Build a table of the tool calls made in one step."""
    table = Table(title=f"Step {event.step_number} tools", show_lines=True)
    table.add_column("Tool", style="cyan", no_wrap=True)
    table.add_column("Arguments")
    table.add_column("Result")
    for call in event.tool_calls:
        table.add_row(
            call.tool_name,
            Text(json.dumps(call.args, indent=1)),
            Text(_preview(call.result), style="red" if call.is_error else ""),
        )
    return table


def render_event(event: OrchestrationEvent, as_json: bool = False) -> None:
    """Print one event to the console.

    Args:
        event: Event from the orchestration loop.
        as_json: Print the wire payload instead of rich output.
    """
    if as_json:
        console.print_json(json.dumps(event.to_dict(), default=str))
        return

    if isinstance(event, TextUpdate):
        console.print(Markdown(event.content))
    elif isinstance(event, ToolExecution):
        console.print(format_tool_execution(event))
    elif isinstance(event, StepProgress):
        tools = ", ".join(event.tools_used) or "none"
        console.print(
            f"[dim]step {event.step_number} ({event.step_type}) "
            f"tools: {tools}, finish: {event.finish_reason}[/dim]"
        )
    elif isinstance(event, ConversationSummary):
        console.print(Panel(
            f"{event.step_count} step(s), {event.tool_call_count} tool call(s)",
            title="Done",
            border_style="green",
        ))
    elif isinstance(event, ErrorEvent):
        console.print(Panel(
            f"{escape(event.error)}\n[dim]{event.error_code}[/dim]",
            title="Error",
            border_style="red",
        ))
