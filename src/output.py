"""Rich console output for announce events and markdown file save for discussion results."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from src.models import DiscussionResult

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_STATUS_LABELS = {
    "completed": "completed",
    "no_consensus": "no summary accepted",
    "stopped": "stopped",
    "failed": "failed",
}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def print_event(text: str) -> None:
    """Render one announce event. Headings become rules, multi-line events panels."""
    if text.startswith("---") and text.endswith("---"):
        console.print(Rule(f"[bold cyan]{text.strip('- ')}[/bold cyan]"))
        return
    title, sep, body = text.partition("\n")
    if sep and body.strip():
        console.print(Panel(Markdown(body), title=f"[bold]{title.rstrip(':')}[/bold]", border_style="dim"))
    else:
        console.print(Text(text, style="dim" if text.endswith("...") else ""))


def print_result_footer(result: DiscussionResult) -> None:
    console.print(
        Text(
            f"Status: {_STATUS_LABELS.get(result.status, result.status)} | "
            f"Iterations: {len(result.iterations)} | "
            f"Accepted summaries: {len(result.accepted_summaries)} | "
            f"Duration: {result.total_duration_sec:.1f}s",
            style="dim",
        )
    )


def save_to_file(result: DiscussionResult, output_dir: Path, slug_override: str | None = None) -> Path:
    """Save the full discussion transcript and final report as a markdown file.

    Args:
        result: The finished DiscussionResult.
        output_dir: Directory to save the file in.
        slug_override: If provided, use this as the filename stem instead of
            deriving one from the topic. Useful for topic files.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(result.topic)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    lines: list[str] = [
        f"# Neural Council Discussion: {result.topic[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Model:** {result.model}",
        f"**Language:** {result.language}",
        f"**Iterations:** {len(result.iterations)}",
        f"**Status:** {_STATUS_LABELS.get(result.status, result.status)}",
        f"**Duration:** {result.total_duration_sec:.1f}s",
        "",
        "---",
        "",
    ]

    for record in result.iterations:
        lines.append(f"## Iteration {record.number}")
        lines.append("")
        for turn in record.turns:
            lines += [f"### {turn.persona_name}", "", turn.content, ""]
        verdict = "accepted" if record.accepted else "rejected"
        lines += [
            f"### Summary ({verdict}, {record.votes_for} for / {record.votes_against} against)",
            "",
            record.summary,
            "",
        ]
        for ballot in record.ballots:
            mark = "for" if ballot.accepted else "against"
            lines.append(f"- **{ballot.persona_name}** ({mark}): {ballot.content}")
        lines.append("")

    if result.final_report:
        lines += ["## Final Report", "", result.final_report, ""]
    elif result.error:
        lines += ["## Aborted", "", result.error, ""]
    else:
        lines += ["## Final Report", "", "_No summary was accepted._", ""]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Discussion saved to: %s", filepath)
    return filepath
