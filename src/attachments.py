"""Topic files with optional frontmatter, and plain-text attachments as opaque context."""

import logging
from pathlib import Path

import frontmatter

logger = logging.getLogger(__name__)

_MAX_ATTACHMENT_CHARS = 20_000


def parse_topic_file(file_path: Path) -> tuple[str, dict]:
    """Parse a markdown topic file with optional YAML frontmatter.

    Returns:
        (topic, metadata) where topic is the body text and metadata may carry
        iterations (int), personas (str, comma-separated), language (str) and
        model (str). If no frontmatter, metadata is {}.
    """
    post = frontmatter.load(str(file_path))
    return post.content.strip(), dict(post.metadata)


def build_attached_context(paths: list[Path], max_chars: int = _MAX_ATTACHMENT_CHARS) -> str | None:
    """Concatenate text attachments into one block, truncating each to max_chars.

    Returns None when there is nothing to attach.
    """
    blocks: list[str] = []
    for path in paths:
        text = path.read_text(encoding="utf-8", errors="replace").strip()
        if not text:
            logger.warning("Attachment %s is empty, skipping", path.name)
            continue
        if len(text) > max_chars:
            logger.warning("Attachment %s truncated to %d characters", path.name, max_chars)
            text = text[:max_chars] + "\n[...truncated]"
        blocks.append(f"--- {path.name} ---\n{text}")
    return "\n\n".join(blocks) if blocks else None
