"""Tests for the agent stages."""

from __future__ import annotations

import pytest

from vibearchitect.agents import (
    ARCHITECT,
    REFINER,
    SCOUT,
    TASKMASTER,
    AgentRunner,
    StageError,
    format_repo_for_prompt,
)
from vibearchitect.config import PipelineSettings, StageSettings
from vibearchitect.gemini_client import MockGeminiClient
from vibearchitect.models import ImagePart, ImageRef, RepoFile, TextPart


class TestFormatRepo:
    """Tests for format_repo_for_prompt."""

    def test_file_blocks(self, repo_files: list[RepoFile]) -> None:
        """Test that each file is wrapped in START/END markers."""
        text = format_repo_for_prompt(repo_files)

        assert "--- START FILE: package.json ---" in text
        assert "--- END FILE: App.tsx ---" in text
        assert text.index("package.json") < text.index("App.tsx")

    def test_no_files(self) -> None:
        """Test that no files give an empty context."""
        assert format_repo_for_prompt([]) == ""


class TestAgentRunner:
    """Tests for AgentRunner prompt assembly and error handling."""

    def test_scout_prompt_and_images(
        self, repo_files: list[RepoFile], sample_image: ImageRef
    ) -> None:
        """Test Scout input text, attached images and temperature."""
        client = MockGeminiClient()
        runner = AgentRunner(client)

        runner.scout("Add dark mode", "", repo_files, [sample_image])

        call = client.calls[0]
        assert call["system_instruction"] == SCOUT.system_instruction
        assert call["temperature"] == 0.2
        text_part, image_part = call["parts"]
        assert isinstance(text_part, TextPart)
        assert "MISSION OBJECTIVE:\nAdd dark mode" in text_part.value
        assert "ERROR FEEDBACK (Issues to fix):\nNone" in text_part.value
        assert "--- START FILE: App.tsx ---" in text_part.value
        assert image_part == ImagePart(mime_type="image/png", data=sample_image.data)

    def test_scout_includes_error_feedback(self, repo_files: list[RepoFile]) -> None:
        """Test that error feedback replaces the None marker."""
        client = MockGeminiClient()

        AgentRunner(client).scout("Fix it", "TypeError: x is undefined", repo_files)

        assert "TypeError: x is undefined" in client.calls[0]["parts"][0].value

    def test_architect_receives_mission_log(self, sample_image: ImageRef) -> None:
        """Test the Architect prompt carries the Scout log and images."""
        client = MockGeminiClient()

        AgentRunner(client).architect("# SCOUT LOG", "Add search", "", [sample_image])

        call = client.calls[0]
        assert call["system_instruction"] == ARCHITECT.system_instruction
        assert call["temperature"] == 0.4
        assert "CURRENT MISSION LOG:\n# SCOUT LOG" in call["parts"][0].value
        assert "ORIGINAL OBJECTIVE:\nAdd search" in call["parts"][0].value
        assert len(call["parts"]) == 2

    def test_taskmaster_has_no_images(self, repo_files: list[RepoFile]) -> None:
        """Test Taskmaster input is text only."""
        client = MockGeminiClient()

        result = AgentRunner(client).taskmaster("# PLAN", repo_files)

        call = client.calls[0]
        assert call["system_instruction"] == TASKMASTER.system_instruction
        assert call["temperature"] == 0.3
        assert len(call["parts"]) == 1
        assert "FULL MISSION LOG:\n# PLAN" in call["parts"][0].value
        assert "=== PROMPT 1:" in result

    def test_refiner_prompt_sections(self, repo_files: list[RepoFile]) -> None:
        """Test the Refiner input carries the current prompts and feedback."""
        client = MockGeminiClient()

        AgentRunner(client).refiner("=== PROMPT 1: A ===\nx", "Button is missing", "# LOG", repo_files)

        text = client.calls[0]["parts"][0].value
        assert client.calls[0]["system_instruction"] == REFINER.system_instruction
        assert client.calls[0]["temperature"] == 0.2
        assert "=== CURRENT PROMPTS (To be fixed) ===\n=== PROMPT 1: A ===\nx" in text
        assert "=== USER FEEDBACK / ERROR REPORT ===\nButton is missing" in text
        assert "CONTEXT - MISSION LOG:\n# LOG" in text

    def test_stage_settings_are_used(self) -> None:
        """Test that configured model and temperature reach the client."""
        client = MockGeminiClient()
        settings = PipelineSettings(taskmaster=StageSettings(temperature=0.9, model="custom"))

        AgentRunner(client, settings).taskmaster("# PLAN", [])

        assert client.calls[0]["temperature"] == 0.9
        assert client.calls[0]["model"] == "custom"

    def test_empty_output_returns_placeholder(self) -> None:
        """Test that an empty model response becomes the stage placeholder."""
        client = MockGeminiClient(responses={}, default_response="")

        assert AgentRunner(client).architect("log", "obj", "") == "Error generating Architect response."

    @pytest.mark.parametrize(
        "stage, message",
        [
            ("Scout", "Scout Agent failed to analyze repository."),
            ("Architect", "Architect Agent failed to plan."),
            ("Taskmaster", "Taskmaster Agent failed to synthesize prompt."),
            ("Repair Technician", "Refiner Agent failed to fix instructions."),
        ],
    )
    def test_failure_raises_stage_error(self, stage: str, message: str) -> None:
        """Test that client errors become StageError with the stage message."""
        runner = AgentRunner(MockGeminiClient(fail_on={stage}))
        calls = {
            "Scout": lambda: runner.scout("obj", "", []),
            "Architect": lambda: runner.architect("log", "obj", ""),
            "Taskmaster": lambda: runner.taskmaster("log", []),
            "Repair Technician": lambda: runner.refiner("p", "f", "log", []),
        }

        with pytest.raises(StageError) as exc_info:
            calls[stage]()

        assert str(exc_info.value) == message
        assert exc_info.value.__cause__ is not None
