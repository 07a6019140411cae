"""The four agent stages: Scout, Architect, Taskmaster and Refiner.

Each stage is one model call with a fixed system instruction, a fixed rule for
assembling its input, and its own temperature. There is no control logic here
beyond formatting; sequencing lives in the pipeline controller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from jinja2 import Template

from .config import PipelineSettings
from .gemini_client import ModelClient, sanitize_error
from .models import ContentPart, ImagePart, ImageRef, RepoFile, TextPart

logger = logging.getLogger(__name__)


class StageError(Exception):
    """Raised when a stage's model call fails."""

    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage


def format_repo_for_prompt(files: Sequence[RepoFile]) -> str:
    """Render files as START/END FILE blocks."""
    return "\n".join(
        f"\n--- START FILE: {f.path} ---\n{f.content}\n--- END FILE: {f.path} ---\n"
        for f in files
    )


SCOUT_INSTRUCTION = """You are the Scout. Analyze the user's 'Mission Objective' (and any attached reference images) along with the provided GitHub Repo.

**Compliance Audit:**
1.  **Structure:** Verify the repo uses a flat structure (no `/src` folder). If it uses `/src`, note in 'Critical Context' that paths must be flattened for the Vibe environment.
2.  **Forbidden Files:** Check for `.css`, `.scss`, or `.less` files. These are banned (Tailwind only).
3.  **Legacy SDK:** Check for `@google/generative-ai`. Flag this, as strict usage of `@google/genai` is required.

**Filter Noise:** Identify ONLY the files necessary for this specific mission. Do not list every file.

**Summarize State:** Briefly explain what the current code in those specific files is doing.

**Output:** Update the `MISSION_LOG`. Preserve the 'ENVIRONMENT MANIFESTO'.
Add sections for:
*   `## RELEVANT FILES`
*   `## CRITICAL CONTEXT` (Include compliance audit findings here)
"""

ARCHITECT_INSTRUCTION = """You are the Architect. Read the `MISSION_LOG`.

**Plan the Logic:** Write pseudo-code for the requested feature.
*   **Constraint (UI):** If adding UI, use ONLY Tailwind utility classes.
*   **Constraint (AI):** If adding AI features, use the pattern: `const ai = new GoogleGenAI({ apiKey: process.env.API_KEY });`.

**Red Team the Plan:** Look for conflicts.
*   Example: "Does this state change trigger a re-render loop in React 18?"
*   Example: "Are we importing a file that doesn't exist in the flat structure?"

**Define Constraints:** Explicitly list variables/functions that MUST NOT be modified.

**Output:** Append your findings to the `MISSION_LOG` under `## HAZARD REGISTRY (DO NOT TOUCH)` and `## IMPLEMENTATION PLAN`.
"""

TASKMASTER_INSTRUCTION = """You are the Taskmaster. Your goal is to break down the implementation into a series of **sequential, manageable prompts** for the Vibe Agent.

**Reasoning:**
To prevent the coding agent from getting overloaded or producing lazy code, you must split the Mission into logical chunks (e.g., 2-3 steps).

**Structure:**
Separate each prompt chunk clearly with this separator:
`=== PROMPT [Number]: [Short Title] ===`

**Template for EACH Prompt Chunk:**
1.  **Header:** 'Act as a surgical code editor. Environment: React 18+, ESM, Tailwind(CDN), HashRouter.'
2.  **The Iron Rules (Must be included in EVERY chunk):**
    *   'CRITICAL: Use `@google/genai` only. Do not import `google-generative-ai`.'
    *   'CRITICAL: Do NOT create `.css` files. Use Tailwind classes.'
    *   'CRITICAL: Regenerate the FULL file content for the files being modified. No placeholders like `// ... rest of code`. The previewer will fail if you do this.'
    *   'CRITICAL: Maintain `export default` on main components.'
3.  **The Task:** "Step [N] of [Total]: [Description of what to build in this step]."
4.  **Context:**
    *   Include the raw code of *only* the files needed for this specific step (from Repository Content).
    *   Include the relevant pseudo-code from the Mission Log.
5.  **Constraints:** "Ensure you respect the Hazard Registry: [Relevant items]."

**Output Rules:**
*   Do NOT output markdown code blocks for the prompt text itself.
*   Just output the raw text separated by the headers.
"""

REFINER_INSTRUCTION = """You are the Repair Technician. You have a set of coding instructions (Prompts) generated for the Vibe Agent. The user has reported an error or requested a change.

**Your Job:**
Modify the existing prompts or ADD a new prompt to fix the issue described by the user.

**Rules:**
1.  **Analyze:** Look at the 'Current Prompts' and the 'User Feedback'. Determine if a specific step caused the error or if a new step is needed.
2.  **Edit vs Add:**
    *   If an existing step is wrong (e.g., syntax error, missing import), REWRITE that specific prompt chunk. Keep the same ID/Title if possible.
    *   If something was missed entirely, ADD a new chunk at the end (increment the ID).
3.  **Preserve Structure:** You MUST return the **FULL set of prompts** (including the ones you didn't change). Maintain the separator: `=== PROMPT [Number]: [Title] ===`.
4.  **Iron Rules:** Ensure any new or edited code instructions still follow the Vibe Environment rules (React 18+, No CSS files, @google/genai only).

**Output:**
Return the raw text of the updated prompt sequence.
"""

SCOUT_TEMPLATE = Template("""
MISSION OBJECTIVE:
{{ objective }}

ERROR FEEDBACK (Issues to fix):
{{ error_feedback or "None" }}

REPOSITORY CONTENT:
{{ file_context }}
""")

ARCHITECT_TEMPLATE = Template("""
ORIGINAL OBJECTIVE:
{{ objective }}

ERROR FEEDBACK:
{{ error_feedback or "None" }}

CURRENT MISSION LOG:
{{ mission_log }}
""")

TASKMASTER_TEMPLATE = Template("""
FULL MISSION LOG:
{{ mission_log }}

REPOSITORY CONTENT (Reference for file contents):
{{ file_context }}
""")

REFINER_TEMPLATE = Template("""
CONTEXT - MISSION LOG:
{{ mission_log }}

CONTEXT - REPO FILES:
{{ file_context }}

=== CURRENT PROMPTS (To be fixed) ===
{{ current_prompts }}

=== USER FEEDBACK / ERROR REPORT ===
{{ feedback }}
""")


@dataclass(frozen=True)
class StageDefinition:
    """Fixed description of one agent stage."""

    name: str
    label: str
    system_instruction: str
    template: Template
    placeholder: str
    failure_message: str


SCOUT = StageDefinition(
    name="scout",
    label="Scout",
    system_instruction=SCOUT_INSTRUCTION,
    template=SCOUT_TEMPLATE,
    placeholder="Error generating Scout response.",
    failure_message="Scout Agent failed to analyze repository.",
)

ARCHITECT = StageDefinition(
    name="architect",
    label="Architect",
    system_instruction=ARCHITECT_INSTRUCTION,
    template=ARCHITECT_TEMPLATE,
    placeholder="Error generating Architect response.",
    failure_message="Architect Agent failed to plan.",
)

TASKMASTER = StageDefinition(
    name="taskmaster",
    label="Taskmaster",
    system_instruction=TASKMASTER_INSTRUCTION,
    template=TASKMASTER_TEMPLATE,
    placeholder="Error generating Taskmaster response.",
    failure_message="Taskmaster Agent failed to synthesize prompt.",
)

REFINER = StageDefinition(
    name="refiner",
    label="Refiner",
    system_instruction=REFINER_INSTRUCTION,
    template=REFINER_TEMPLATE,
    placeholder="Error generating Refiner response.",
    failure_message="Refiner Agent failed to fix instructions.",
)


class AgentRunner:
    """Runs the agent stages against a model client."""

    def __init__(self, client: ModelClient, settings: Optional[PipelineSettings] = None):
        self.client = client
        self.settings = settings or PipelineSettings()

    def scout(
        self,
        objective: str,
        error_feedback: str,
        files: Sequence[RepoFile],
        images: Sequence[ImageRef] = (),
    ) -> str:
        """Audit the repository against the objective and seed the mission log."""
        text = SCOUT.template.render(
            objective=objective,
            error_feedback=error_feedback,
            file_context=format_repo_for_prompt(files),
        )
        return self._invoke(SCOUT, text, images)

    def architect(
        self,
        mission_log: str,
        objective: str,
        error_feedback: str,
        images: Sequence[ImageRef] = (),
    ) -> str:
        """Plan the logic and hazards on top of the Scout's mission log."""
        text = ARCHITECT.template.render(
            objective=objective,
            error_feedback=error_feedback,
            mission_log=mission_log,
        )
        return self._invoke(ARCHITECT, text, images)

    def taskmaster(self, mission_log: str, files: Sequence[RepoFile]) -> str:
        """Split the plan into delimited prompt chunks."""
        text = TASKMASTER.template.render(
            mission_log=mission_log,
            file_context=format_repo_for_prompt(files),
        )
        return self._invoke(TASKMASTER, text)

    def refiner(
        self,
        current_prompts: str,
        feedback: str,
        mission_log: str,
        files: Sequence[RepoFile],
    ) -> str:
        """Rewrite or extend the full chunk sequence according to user feedback."""
        text = REFINER.template.render(
            mission_log=mission_log,
            file_context=format_repo_for_prompt(files),
            current_prompts=current_prompts,
            feedback=feedback,
        )
        return self._invoke(REFINER, text)

    def _invoke(
        self,
        stage: StageDefinition,
        text: str,
        images: Sequence[ImageRef] = (),
    ) -> str:
        parts: list[ContentPart] = [TextPart(text)]
        parts.extend(ImagePart.from_ref(image) for image in images)

        settings = self.settings.for_stage(stage.name)
        logger.debug(
            f"{stage.label}: {len(text)} chars of prompt, {len(images)} image(s), "
            f"model={settings.model}, temp={settings.temperature}"
        )

        try:
            output = self.client.generate(
                system_instruction=stage.system_instruction,
                parts=parts,
                temperature=settings.temperature,
                model=settings.model,
            )
        except Exception as e:
            logger.error(f"{stage.label} Error: {sanitize_error(str(e))}")
            raise StageError(stage.name, stage.failure_message) from e

        if not output:
            logger.warning(f"{stage.label} returned an empty response")
            return stage.placeholder
        return output
