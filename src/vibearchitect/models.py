"""Shared data types for the staging pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Literal, Optional, Union


INITIAL_MISSION_LOG = """# MISSION CONTROL
**Language:** TypeScript (.tsx)
**Framework:** React 18+ (ESM)

## ENVIRONMENT MANIFESTO (IMMUTABLE LAWS)
* **SDK:** MUST use `@google/genai` (NOT `@google/generative-ai`).
* **Styling:** Tailwind via CDN only. NO `.css` files. NO `styled-components`.
* **Routing:** `HashRouter` only (No history API).
* **Icons:** `lucide-react` only.
* **Structure:** Flat root (./). NO `/src` folder. `index.tsx` is entry.
* **TS Rules:** Use `interface` (not type). Use `enum` (not const enum).
"""


class PipelineStatus(str, Enum):
    """Lifecycle states of a pipeline run."""

    IDLE = "idle"
    FETCHING = "fetching"
    SCOUT_WORKING = "scout-working"
    ARCHITECT_WORKING = "architect-working"
    TASKMASTER_WORKING = "taskmaster-working"
    REFINING = "refining"
    COMPLETED = "completed"
    ERROR = "error"


# States in which a model call or fetch is outstanding
WORKING_STATUSES = frozenset({
    PipelineStatus.FETCHING,
    PipelineStatus.SCOUT_WORKING,
    PipelineStatus.ARCHITECT_WORKING,
    PipelineStatus.TASKMASTER_WORKING,
    PipelineStatus.REFINING,
})


@dataclass(frozen=True)
class RepoFile:
    """A text file fetched from the target repository."""

    path: str
    content: str
    size: int


@dataclass(frozen=True)
class ImageRef:
    """A reference image attached by the user."""

    data: str  # base64 encoded
    mime_type: str


@dataclass(frozen=True)
class TextPart:
    """Plain text segment of a model prompt."""

    value: str
    kind: Literal["text"] = "text"


@dataclass(frozen=True)
class ImagePart:
    """Inline image segment of a model prompt."""

    mime_type: str
    data: str
    kind: Literal["image"] = "image"

    @classmethod
    def from_ref(cls, image: ImageRef) -> ImagePart:
        return cls(mime_type=image.mime_type, data=image.data)


ContentPart = Union[TextPart, ImagePart]


@dataclass(frozen=True)
class ParsedPromptChunk:
    """One instruction block extracted from the final prompt."""

    id: str
    title: str
    content: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PipelineState:
    """Observable state of a controller: status, mission log, final prompt, error."""

    status: PipelineStatus = PipelineStatus.IDLE
    mission_log: str = INITIAL_MISSION_LOG
    final_prompt: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_processing(self) -> bool:
        """True while a fetch or model call is outstanding."""
        return self.status in WORKING_STATUSES

    def to_dict(self) -> dict:
        """Convert state to a JSON-friendly dictionary."""
        return {
            "status": self.status.value,
            "mission_log": self.mission_log,
            "final_prompt": self.final_prompt,
            "error": self.error,
            "is_processing": self.is_processing,
        }
