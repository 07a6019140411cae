"""Mission writer for exporting a finished run to markdown files."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path

from .models import ParsedPromptChunk, PipelineState

logger = logging.getLogger(__name__)


def slugify(title: str, max_length: int = 40) -> str:
    """Turn a chunk title into a filename-safe slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug[:max_length].rstrip("-") or "chunk"


class MissionWriter:
    """Writes the mission log, final prompt and per-chunk prompt files."""

    def __init__(self, output_dir: Path):
        """Initialize the mission writer.

        Args:
            output_dir: Directory to write into. Created if missing.
        """
        self.output_dir = output_dir
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def write(
        self,
        state: PipelineState,
        chunks: list[ParsedPromptChunk],
        repo_url: str = "",
        objective: str = "",
    ) -> list[Path]:
        """Write all mission artifacts.

        Layout::

            mission_log.md
            final_prompt.md
            prompts/01-<slug>.md, 02-<slug>.md, ...

        Returns:
            Paths of the files written.
        """
        written = []

        log_path = self.output_dir / "mission_log.md"
        log_path.write_text(
            self._generate_header(repo_url, objective, state) + "\n\n" + state.mission_log,
            encoding="utf-8",
        )
        written.append(log_path)

        if state.final_prompt is not None:
            prompt_path = self.output_dir / "final_prompt.md"
            prompt_path.write_text(state.final_prompt, encoding="utf-8")
            written.append(prompt_path)

        prompts_dir = self.output_dir / "prompts"
        if chunks:
            prompts_dir.mkdir(exist_ok=True)
            for old in prompts_dir.glob("*.md"):
                old.unlink()
        for position, chunk in enumerate(chunks, start=1):
            chunk_path = prompts_dir / f"{position:02d}-{slugify(chunk.title)}.md"
            chunk_path.write_text(self._format_chunk(chunk, position, len(chunks)), encoding="utf-8")
            written.append(chunk_path)

        logger.info(f"Wrote {len(written)} file(s) to {self.output_dir}")
        return written

    def _generate_header(self, repo_url: str, objective: str, state: PipelineState) -> str:
        """Generate the document header."""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        return f"""<!--
Generated: {timestamp}
Repository: {repo_url or "-"}
Objective: {objective or "-"}
Status: {state.status.value}
-->"""

    def _format_chunk(self, chunk: ParsedPromptChunk, position: int, total: int) -> str:
        return f"""# Prompt {chunk.id}: {chunk.title}

*Chunk {position} of {total}*

{chunk.content}
"""
