"""Pipeline controller for the Scout -> Architect -> Taskmaster chain.

The controller owns the observable PipelineState and is the only writer of it.
A run moves through::

    idle -> fetching -> scout-working -> architect-working
         -> taskmaster-working -> completed

and any failure along the way ends in ``error``. From a run that produced a
final prompt, refinement cycles ``refining -> completed`` (or ``error``),
replacing the final prompt wholesale each time.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence

from .agents import AgentRunner, StageError
from .chunks import chunk_id_warnings, parse_chunks
from .dashboard.events import EventEmitter, EventType
from .gemini_client import sanitize_error
from .github_fetcher import RepoFetchError
from .models import (
    INITIAL_MISSION_LOG,
    ImageRef,
    ParsedPromptChunk,
    PipelineState,
    PipelineStatus,
    RepoFile,
)

logger = logging.getLogger(__name__)

GENERIC_PIPELINE_ERROR = "An unexpected error occurred in the pipeline."
GENERIC_REFINEMENT_ERROR = "Failed to refine instructions."


class Fetcher(Protocol):
    """Anything that turns a repository locator into files."""

    def fetch(self, repo_url: str) -> list[RepoFile]:
        ...


class PipelineController:
    """Runs the agent stages in order and exposes their progress."""

    def __init__(
        self,
        agents: AgentRunner,
        fetcher: Fetcher,
        manifesto: str = INITIAL_MISSION_LOG,
        emitter: Optional[EventEmitter] = None,
    ):
        """Initialize the controller.

        Args:
            agents: Runner for the four model stages.
            fetcher: Repository fetcher.
            manifesto: Initial mission log text seeded at the start of every run.
            emitter: Event emitter for observers; a private one is created if omitted.
        """
        self.agents = agents
        self.fetcher = fetcher
        self.manifesto = manifesto
        self.emitter = emitter or EventEmitter()
        self.state = PipelineState(mission_log=manifesto)
        self._files: tuple[RepoFile, ...] = ()
        self._images: list[ImageRef] = []

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def files(self) -> tuple[RepoFile, ...]:
        """Files fetched by the last run, reused by refinement."""
        return self._files

    @property
    def images(self) -> tuple[ImageRef, ...]:
        return tuple(self._images)

    def chunks(self) -> list[ParsedPromptChunk]:
        """Parsed view of the current final prompt."""
        if self.state.final_prompt is None:
            return []
        return parse_chunks(self.state.final_prompt)

    # ------------------------------------------------------------------
    # Image attachments
    # ------------------------------------------------------------------

    def add_image(self, image: ImageRef) -> None:
        self._images.append(image)
        self.emitter.emit(EventType.IMAGES_CHANGED, {"count": len(self._images)})

    def remove_image(self, index: int) -> Optional[ImageRef]:
        """Detach the image at ``index``; out-of-range indexes are ignored."""
        if not 0 <= index < len(self._images):
            return None
        removed = self._images.pop(index)
        self.emitter.emit(EventType.IMAGES_CHANGED, {"count": len(self._images)})
        return removed

    def clear_images(self) -> None:
        self._images.clear()
        self.emitter.emit(EventType.IMAGES_CHANGED, {"count": 0})

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def execute_pipeline(
        self,
        repo_url: str,
        objective: str,
        error_feedback: str = "",
        images: Optional[Sequence[ImageRef]] = None,
    ) -> PipelineState:
        """Fetch the repository and run Scout, Architect and Taskmaster.

        Does nothing when the locator or objective is empty, or while another
        run or refinement is in progress.

        Args:
            repo_url: Repository locator.
            objective: What the coding agent should achieve.
            error_feedback: Issues from a previous attempt to fix.
            images: Reference images; defaults to the attached images.

        Returns:
            The controller state after the run.
        """
        if not (repo_url or "").strip() or not (objective or "").strip():
            logger.debug("Pipeline not started: repository and objective are required")
            return self.state
        if self.state.is_processing:
            logger.warning(f"Pipeline not started: controller is busy ({self.state.status.value})")
            return self.state

        images = tuple(self._images if images is None else images)

        self.state.mission_log = self.manifesto
        self.state.final_prompt = None
        self.state.error = None
        self.emitter.emit(EventType.PIPELINE_START, {
            "repo_url": repo_url,
            "objective": objective,
            "images": len(images),
        })
        self._set_status(PipelineStatus.FETCHING)

        try:
            files = self.fetcher.fetch(repo_url)
            self._files = tuple(files)
            self.emitter.emit(EventType.FILES_FETCHED, {
                "count": len(files),
                "paths": [f.path for f in files],
            })
            self._log(f"Fetched {len(files)} file(s) from {repo_url}")

            self._set_status(PipelineStatus.SCOUT_WORKING)
            scout_log = self.agents.scout(objective, error_feedback, files, images)
            self._set_mission_log(scout_log)

            self._set_status(PipelineStatus.ARCHITECT_WORKING)
            architect_log = self.agents.architect(scout_log, objective, error_feedback, images)
            self._set_mission_log(architect_log)

            self._set_status(PipelineStatus.TASKMASTER_WORKING)
            final_prompt = self.agents.taskmaster(architect_log, files)
            self._set_final_prompt(final_prompt)

        except (RepoFetchError, StageError) as e:
            self._fail(str(e) or GENERIC_PIPELINE_ERROR)
            return self.state
        except Exception as e:
            logger.exception("Unexpected pipeline failure")
            self._fail(str(e) or GENERIC_PIPELINE_ERROR)
            return self.state

        self._set_status(PipelineStatus.COMPLETED)
        return self.state

    def execute_refinement(self, feedback: str) -> PipelineState:
        """Ask the Refiner to rewrite or extend the current chunk sequence.

        Does nothing without a final prompt, with empty feedback, or while
        another command is in progress. The final prompt is left unchanged if
        the Refiner fails.

        Args:
            feedback: Error report or change request from the user.

        Returns:
            The controller state after refinement.
        """
        if self.state.final_prompt is None or not (feedback or "").strip():
            logger.debug("Refinement not started: final prompt and feedback are required")
            return self.state
        if self.state.is_processing:
            logger.warning(f"Refinement not started: controller is busy ({self.state.status.value})")
            return self.state

        self.state.error = None
        self.emitter.emit(EventType.REFINEMENT_START, {"feedback": feedback})
        self._set_status(PipelineStatus.REFINING)

        try:
            updated = self.agents.refiner(
                self.state.final_prompt,
                feedback,
                self.state.mission_log,
                self._files,
            )
        except StageError as e:
            self._fail(str(e) or GENERIC_REFINEMENT_ERROR)
            return self.state
        except Exception as e:
            logger.exception("Unexpected refinement failure")
            self._fail(str(e) or GENERIC_REFINEMENT_ERROR)
            return self.state

        self._set_final_prompt(updated)
        self._set_status(PipelineStatus.COMPLETED)
        return self.state

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _log(self, message: str, level: str = "info") -> None:
        """Log a message and forward it to observers."""
        logger.log(logging.WARNING if level == "warning" else logging.INFO, message)
        self.emitter.emit(EventType.LOG, {"message": message, "level": level})

    def _set_status(self, status: PipelineStatus) -> None:
        previous = self.state.status
        self.state.status = status
        logger.info(f"Status: {previous.value} -> {status.value}")
        self.emitter.emit(EventType.STATUS_CHANGE, {
            "previous": previous.value,
            "status": status.value,
        })

    def _set_mission_log(self, mission_log: str) -> None:
        self.state.mission_log = mission_log
        if self.manifesto.strip() and self.manifesto.strip().splitlines()[0] not in mission_log:
            logger.warning("Mission log no longer starts from the manifesto header")
        self.emitter.emit(EventType.MISSION_LOG_UPDATED, {"mission_log": mission_log})

    def _set_final_prompt(self, final_prompt: str) -> None:
        self.state.final_prompt = final_prompt
        chunks = parse_chunks(final_prompt)
        for warning in chunk_id_warnings(chunks):
            self._log(warning, level="warning")
        self.emitter.emit(EventType.FINAL_PROMPT_UPDATED, {
            "final_prompt": final_prompt,
            "chunks": [c.to_dict() for c in chunks],
        })

    def _fail(self, message: str) -> None:
        message = sanitize_error(message)
        self.state.error = message
        logger.error(message)
        self._set_status(PipelineStatus.ERROR)
        self.emitter.emit(EventType.ERROR, {"message": message})

    def close(self) -> None:
        """Release the HTTP clients held by the model client and the fetcher."""
        for resource in (self.agents.client, self.fetcher):
            close = getattr(resource, "close", None)
            if callable(close):
                close()
