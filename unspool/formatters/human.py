"""Human formatter — Rich terminal output."""
from __future__ import annotations

import os
import sys

from rich.box import ASCII as ASCII_BOX, ROUNDED
from rich.console import Console, Group
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from unspool.session import parse_ts, preview, relative_delta, short_id, truncate_lines

# ── Module state ──────────────────────────────────────────────────────

USE_ASCII = False
console = Console()


def init(ascii_mode: bool = False, force_color: bool = False):
    global USE_ASCII, console
    USE_ASCII = ascii_mode
    if force_color:
        console = Console(force_terminal=True)
    else:
        console = Console()


def detect_ascii() -> bool:
    encoding = getattr(sys.stdout, "encoding", "") or ""
    if encoding.lower().replace("-", "") not in ("utf8", "utf16", "utf32"):
        return True
    lang = os.environ.get("LANG", "") + os.environ.get("LC_ALL", "")
    if lang and "utf" not in lang.lower():
        return True
    return False


def box_style():
    return ASCII_BOX if USE_ASCII else ROUNDED


def table_box():
    if USE_ASCII:
        return ASCII_BOX
    from rich.box import HEAVY_HEAD
    return HEAVY_HEAD


# ── Block rendering ───────────────────────────────────────────────────

ROLE_STYLES = {
    "user": ("User", "cyan"),
    "assistant": ("Assistant", "green"),
    "system": ("System", "blue"),
}

STATUS_STYLES = {
    "running": "yellow",
    "completed": "green",
    "failed": "red",
}


def _status_mark(status: str) -> Text:
    if USE_ASCII:
        glyph = {"running": "[..]", "completed": "[ok]", "failed": "[x]"}.get(status, "[?]")
    else:
        glyph = {"running": "○", "completed": "✓", "failed": "✗"}.get(status, "?")
    return Text(glyph, style=STATUS_STYLES.get(status, "dim"))


def _render_text(text: str):
    text = text.strip()
    return Markdown(text) if len(text) < 8000 else Text(truncate_lines(text, 30))


def _render_error(message: str) -> Text:
    t = Text()
    t.append("  [error] ", style="bold red")
    t.append(message.strip(), style="red")
    return t


def _render_tool(tool: dict, indent: str = "  ") -> Text:
    t = Text(indent)
    t.append_text(_status_mark(tool.get("status", "")))
    t.append(" [tool] ", style="yellow")
    t.append(tool.get("tool_name", "?"), style="bold yellow")
    summary = tool.get("summary", "")
    if summary and summary != tool.get("tool_name"):
        t.append(f" {summary}", style="dim yellow")
    output = tool.get("output")
    if output:
        t.append(f"\n{indent}    ", style="dim")
        t.append(preview(output), style="dim")
    return t


def _render_subagent(activity: dict) -> Group:
    head = Text("  ")
    head.append_text(_status_mark(activity.get("status", "")))
    head.append(" [task] ", style="bold blue")
    head.append(activity.get("subagent_type", ""), style="blue")
    desc = activity.get("description", "")
    if desc:
        head.append(f" - {desc}", style="dim blue")
    parts = [head]
    for tool in activity.get("tools", []):
        parts.append(_render_tool(tool, indent="      "))
    result = activity.get("result")
    if result:
        parts.append(Text(f"      => {preview(result)}", style="dim blue"))
    return Group(*parts)


def _render_parallel(activities: list[dict]) -> Table:
    table = Table(title=f"{len(activities)} parallel agents", title_justify="left",
                  show_header=True, padding=(0, 1), box=box_style(), expand=True)
    table.add_column("", no_wrap=True, width=4)
    table.add_column("Agent", style="blue", no_wrap=True, max_width=20)
    table.add_column("Description", overflow="ellipsis", ratio=1)
    table.add_column("Tools", justify="right", no_wrap=True)
    for activity in activities:
        table.add_row(
            _status_mark(activity.get("status", "")),
            escape(activity.get("subagent_type", "")),
            escape(activity.get("description", "")),
            str(len(activity.get("tools", []))),
        )
    return table


def _render_block(block: dict):
    bt = block.get("type")
    if bt == "text":
        return _render_text(block.get("text", ""))
    if bt == "error":
        return _render_error(block.get("message", ""))
    if bt == "tool_use":
        return _render_tool(block)
    if bt == "subagent":
        return _render_subagent(block)
    return Text(str(block), style="dim")


def _render_group(group: dict):
    kind = group.get("kind")
    if kind == "block":
        return _render_block(group["block"])
    if kind == "parallel_subagents":
        activities = group.get("activities", [])
        if len(activities) == 1:
            return _render_subagent(activities[0])
        return _render_parallel(activities)
    if kind == "tool_group":
        tools = group.get("tools", [])
        return Group(*(_render_tool(t) for t in tools))
    return Text(str(group), style="dim")


# ── Read formatter ────────────────────────────────────────────────────

def render_message(msg: dict, prev_ts, flat: bool = False):
    """Render one canonical message dict. Returns its timestamp."""
    ts = parse_ts(msg.get("created_at"))
    delta_str = relative_delta(prev_ts, ts)
    if delta_str:
        console.print(Text(f"  +{delta_str}", style="dim italic"))

    role = msg.get("role", "system")
    title, border = ROLE_STYLES.get(role, ("System", "blue"))
    if any(b.get("type") == "error" for b in msg.get("blocks", [])):
        border = "red"

    if flat:
        parts = [_render_block(b) for b in msg.get("blocks", [])]
    else:
        parts = [_render_group(g) for g in msg.get("display", [])]

    console.print(Panel(
        Group(*parts),
        title=f"{title} #{msg.get('sequence_number', 0)}",
        title_align="left",
        subtitle=escape(short_id(msg.get("id", ""))),
        subtitle_align="right",
        border_style=border, width=min(console.width, 120),
        padding=(0, 1), box=box_style(),
    ))
    return ts


def format_read(data: dict, flat: bool = False) -> None:
    messages = data.get("messages", [])
    if not messages:
        console.print("[yellow]No visible messages.[/]")
        return
    prev_ts = None
    for msg in messages:
        prev_ts = render_message(msg, prev_ts, flat=flat) or prev_ts
    console.print(f"\n[dim]{len(messages)} messages from "
                  f"{data.get('decrypted_message_count', 0)} rows[/]")


# ── Stats formatter ───────────────────────────────────────────────────

def _format_duration(dur: int) -> str:
    if dur >= 3600:
        return f"{dur // 3600}h {(dur % 3600) // 60}m {dur % 60}s"
    if dur >= 60:
        return f"{dur // 60}m {dur % 60}s"
    return f"{dur}s"


def format_stats(data: dict) -> None:
    w = min(console.width, 120)

    rows = data.get("rows", {})
    msgs = data.get("messages", {})
    by_role = msgs.get("by_role", {})
    tools = data.get("tools", {})
    agents = data.get("subagents", {})

    lines = []
    lines.append(f"[bold]Duration:[/] {_format_duration(data.get('duration_secs', 0))}  |  "
                 f"[bold]Rows:[/] {rows.get('total', 0)} "
                 f"({rows.get('duplicates', 0)} duplicate, {rows.get('without_message', 0)} hidden)")
    lines.append(f"[bold]Messages:[/] {msgs.get('total', 0)} "
                 f"({by_role.get('user', 0)} user / {by_role.get('assistant', 0)} assistant / "
                 f"{by_role.get('system', 0)} system)")

    tool_names = tools.get("by_name", {})
    top_tools = sorted(tool_names.items(), key=lambda x: x[1], reverse=True)[:10]
    tool_str = ", ".join(f"{n}: {c}" for n, c in top_tools)
    lines.append(f"[bold]Tools:[/] {tools.get('total_calls', 0)} calls ({tool_str})")
    failed = tools.get("by_status", {}).get("failed", 0)
    if failed > 0:
        lines.append(f"  [red]Failed: {failed} ({tools.get('error_rate', 0):.1%})[/]")

    lines.append(f"[bold]Sub-agents:[/] {agents.get('count', 0)}")

    console.print(Panel(
        "\n".join(lines),
        title=f"Timeline {escape(data.get('source', ''))}",
        border_style="blue", box=box_style(), width=w,
    ))

    by_type = agents.get("by_type", {})
    if by_type:
        table = Table(show_header=True, box=box_style(), padding=(0, 1),
                      title="Sub-agents by type", width=min(w, 80))
        table.add_column("Type", style="cyan")
        table.add_column("Count", justify="right")
        for name, count in sorted(by_type.items(), key=lambda x: x[1], reverse=True):
            table.add_row(escape(name), str(count))
        console.print(table)


# ── Shapes formatter ──────────────────────────────────────────────────

def format_shapes(data: dict) -> None:
    # Coverage mode
    if "coverage" in data:
        _format_coverage(data)
        return

    shapes = data.get("shapes", [])
    w = min(console.width, 120)

    table = Table(title=f"Shapes for {escape(data.get('source', ''))}",
                  show_lines=False, padding=(0, 1), box=table_box(), width=w)
    table.add_column("Fingerprint", style="cyan", no_wrap=True, width=12)
    table.add_column("Type", style="bold", no_wrap=True, width=14)
    table.add_column("Role", no_wrap=True, width=9)
    table.add_column("Count", justify="right", width=6)
    table.add_column("Keys", overflow="ellipsis")

    for shape in shapes:
        table.add_row(
            shape["fingerprint"],
            shape.get("type", ""),
            shape.get("role", ""),
            str(shape.get("count", 0)),
            shape.get("keys", ""),
        )

    console.print(table)
    payloads = data.get("payloads", {})
    console.print(f"\n[dim]{len(shapes)} unique shapes, "
                  f"{payloads.get('wrapped', 0)} wrapped, "
                  f"{payloads.get('plain', 0)} plain text, "
                  f"{payloads.get('broken', 0)} broken[/]")

    # Deep mode: show paths for each shape
    for shape in shapes:
        paths = shape.get("paths")
        if paths:
            console.print(f"\n[bold cyan]{shape['fingerprint']}[/] ({shape.get('type', '')}):")
            for p in paths:
                console.print(f"  {p['path']}: [dim]{p['type']}[/]")


def _format_coverage(data: dict) -> None:
    cov = data["coverage"]
    lines = [
        f"[bold]Source shapes:[/] {cov['source_shapes']}",
        f"[bold]File shapes:[/] {cov['file_shapes']}",
        f"[bold]Matched:[/] {cov['matched']}",
        f"[bold]Coverage:[/] {cov['coverage_ratio']:.1%}",
    ]
    missing = cov.get("missing_from_file", [])
    if missing:
        lines.append(f"[red]Missing from file:[/] {', '.join(missing)}")
    extra = cov.get("extra_in_file", [])
    if extra:
        lines.append(f"[yellow]Extra in file:[/] {', '.join(extra)}")
    console.print(Panel(
        "\n".join(lines),
        title=f"Coverage: {escape(data.get('source', ''))}",
        border_style="blue", box=box_style(),
    ))
