"""Shared test fixtures for vibe-architect tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from vibearchitect.agents import AgentRunner
from vibearchitect.dashboard.events import Event, EventEmitter
from vibearchitect.gemini_client import MockGeminiClient
from vibearchitect.github_fetcher import MockRepoFetcher
from vibearchitect.models import ImageRef, RepoFile
from vibearchitect.pipeline import PipelineController


@pytest.fixture
def repo_files() -> list[RepoFile]:
    """Small set of files standing in for a fetched repository."""
    return [
        RepoFile(path="package.json", content='{"name": "demo"}', size=16),
        RepoFile(path="App.tsx", content="export default function App() { return null; }", size=48),
    ]


@pytest.fixture
def sample_image() -> ImageRef:
    """A tiny base64 payload tagged as PNG."""
    return ImageRef(data="iVBORw0KGgo=", mime_type="image/png")


@pytest.fixture
def mock_client() -> MockGeminiClient:
    """Mock model client with the canned stage responses."""
    return MockGeminiClient()


@pytest.fixture
def mock_fetcher(repo_files: list[RepoFile]) -> MockRepoFetcher:
    """Mock fetcher returning the sample files."""
    return MockRepoFetcher(files=repo_files)


@pytest.fixture
def recorded_events() -> list[Event]:
    """List that collects events from the controller fixture."""
    return []


@pytest.fixture
def controller(
    mock_client: MockGeminiClient,
    mock_fetcher: MockRepoFetcher,
    recorded_events: list[Event],
) -> PipelineController:
    """Controller wired to mock collaborators, recording every event."""
    emitter = EventEmitter()
    emitter.subscribe(recorded_events.append)
    return PipelineController(
        agents=AgentRunner(mock_client),
        fetcher=mock_fetcher,
        emitter=emitter,
    )


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """Config directory with a pipeline.yaml overriding a few settings."""
    directory = tmp_path / "config"
    directory.mkdir()
    (directory / "pipeline.yaml").write_text(
        """stages:
  scout:
    temperature: 0.1
  refiner:
    model: gemini-test-model
fetch:
  max_files: 5
  max_workers: 2
"""
    )
    return directory
