"""Fetch text files from a public GitHub repository.

Resolves the default branch, lists its tree, keeps code/text files that pass the
allow-list and exclusion rules, and downloads the top ``max_files`` of them.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

import httpx

from .config import Config, FetchSettings
from .models import RepoFile

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com/repos"
GITHUB_RAW_BASE = "https://raw.githubusercontent.com"

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class RepoFetchError(Exception):
    """Raised when the repository cannot be read."""

    pass


class InvalidRepoUrlError(RepoFetchError):
    """Raised when a locator has no recognizable owner/repo segments."""

    pass


@dataclass(frozen=True)
class RepoLocator:
    """Owner and repository name parsed from a URL."""

    owner: str
    repo: str


@dataclass(frozen=True)
class TreeItem:
    """A blob entry from the git tree listing."""

    path: str
    size: Optional[int] = None


def parse_repo_url(url: str) -> RepoLocator:
    """Parse ``https://github.com/owner/repo`` style locators.

    Accepts full URLs, ``github.com/owner/repo`` and bare ``owner/repo``,
    with or without a trailing slash or ``.git`` suffix.

    Raises:
        InvalidRepoUrlError: If owner and repo cannot be identified.
    """
    clean = (url or "").strip().rstrip("/")
    if clean.endswith(".git"):
        clean = clean[: -len(".git")]

    segments = [s for s in clean.split("/") if s]
    if len(segments) < 2:
        raise InvalidRepoUrlError(
            "Invalid GitHub URL format. Use https://github.com/owner/repo"
        )

    owner, repo = segments[-2], segments[-1]
    if not _SEGMENT_RE.match(owner) or not _SEGMENT_RE.match(repo) or owner == "github.com":
        raise InvalidRepoUrlError(
            "Invalid GitHub URL format. Use https://github.com/owner/repo"
        )

    return RepoLocator(owner=owner, repo=repo)


def is_relevant_path(path: str, settings: FetchSettings) -> bool:
    """Check the extension allow-list and the lock/build/dependency exclusions."""
    if not any(path.endswith(ext) for ext in settings.extensions):
        return False
    return not any(marker in path for marker in settings.excluded_markers)


def prioritize(items: list[TreeItem], settings: FetchSettings) -> list[TreeItem]:
    """Sort manifest files first, then shallower paths."""

    def sort_key(item: TreeItem) -> tuple[int, int]:
        is_manifest = any(item.path.endswith(name) for name in settings.priority_files)
        return (0 if is_manifest else 1, item.path.count("/"))

    return sorted(items, key=sort_key)


class RepoFetcher:
    """Downloads a bounded set of text files from a GitHub repository."""

    def __init__(
        self,
        settings: Optional[FetchSettings] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        """Initialize the fetcher.

        Args:
            settings: Filtering, cap and concurrency settings.
            http_client: Optional pre-built httpx client (used by tests).
        """
        self.settings = settings or FetchSettings()
        self.client = http_client or httpx.Client(
            timeout=self.settings.timeout,
            follow_redirects=True,
            headers={"Accept": "application/vnd.github+json"},
        )

    def fetch(self, repo_url: str) -> list[RepoFile]:
        """Fetch the filtered, prioritized and capped file list.

        Args:
            repo_url: Repository locator.

        Returns:
            Files in priority order. Files whose content could not be
            downloaded are omitted.

        Raises:
            InvalidRepoUrlError: If the locator is malformed (no network call is made).
            RepoFetchError: If the repository or its default branch tree is unreadable.
        """
        locator = parse_repo_url(repo_url)
        branch = self._default_branch(locator)
        tree = self._list_tree(locator, branch)

        relevant = [item for item in tree if is_relevant_path(item.path, self.settings)]
        selected = prioritize(relevant, self.settings)[: self.settings.max_files]
        logger.info(
            f"{locator.owner}/{locator.repo}@{branch}: {len(tree)} blobs, "
            f"{len(relevant)} relevant, fetching {len(selected)}"
        )

        # Join barrier: every download finishes (or fails soft) before returning
        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as executor:
            results = list(executor.map(
                lambda item: self._fetch_file(locator, branch, item), selected
            ))

        files = [f for f in results if f is not None]
        if len(files) < len(selected):
            logger.warning(f"Skipped {len(selected) - len(files)} file(s) that failed to download")
        return files

    def _get_json(self, url: str, what: str) -> dict:
        try:
            response = self.client.get(url)
        except httpx.HTTPError as exc:
            raise RepoFetchError(f"Failed to fetch {what}: {exc}") from exc

        if not response.is_success:
            reason = response.reason_phrase or f"HTTP {response.status_code}"
            raise RepoFetchError(
                f"Failed to fetch {what}: {reason}. Ensure repo is public."
            )

        try:
            return response.json()
        except ValueError as exc:
            raise RepoFetchError(f"Failed to fetch {what}: invalid JSON response") from exc

    def _default_branch(self, locator: RepoLocator) -> str:
        data = self._get_json(
            f"{GITHUB_API_BASE}/{locator.owner}/{locator.repo}", "repository"
        )
        branch = data.get("default_branch")
        if not branch:
            raise RepoFetchError(
                f"Repository {locator.owner}/{locator.repo} has no default branch"
            )
        return branch

    def _list_tree(self, locator: RepoLocator, branch: str) -> list[TreeItem]:
        data = self._get_json(
            f"{GITHUB_API_BASE}/{locator.owner}/{locator.repo}/git/trees/{branch}?recursive=1",
            "repo tree",
        )
        if data.get("truncated"):
            logger.warning("GitHub truncated the tree listing; some files are not considered")
        return [
            TreeItem(path=entry["path"], size=entry.get("size"))
            for entry in data.get("tree", [])
            if entry.get("type") == "blob" and entry.get("path")
        ]

    def _fetch_file(self, locator: RepoLocator, branch: str, item: TreeItem) -> Optional[RepoFile]:
        url = f"{GITHUB_RAW_BASE}/{locator.owner}/{locator.repo}/{branch}/{item.path}"
        try:
            response = self.client.get(url)
        except httpx.HTTPError as exc:
            logger.warning(f"Failed to fetch content for {item.path}: {exc}")
            return None

        if not response.is_success:
            logger.warning(f"Failed to fetch content for {item.path}: HTTP {response.status_code}")
            return None

        text = response.text
        return RepoFile(path=item.path, content=text, size=item.size or len(text))

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self.client.close()


MOCK_REPO_FILES = [
    RepoFile(
        path="package.json",
        content='{\n  "name": "mock-app",\n  "dependencies": {"react": "^18.2.0"}\n}\n',
        size=62,
    ),
    RepoFile(
        path="App.tsx",
        content="export default function App() {\n  return <div className=\"p-4\">Hello</div>;\n}\n",
        size=78,
    ),
]


class MockRepoFetcher:
    """Mock fetcher returning fixed files without network access."""

    def __init__(self, files: Optional[list[RepoFile]] = None, error: Optional[Exception] = None):
        self.files = list(files) if files is not None else list(MOCK_REPO_FILES)
        self.error = error
        self.requested: list[str] = []

    def fetch(self, repo_url: str) -> list[RepoFile]:
        self.requested.append(repo_url)
        parse_repo_url(repo_url)
        if self.error is not None:
            raise self.error
        return list(self.files)


def create_repo_fetcher(config: Config):
    """Create the repository fetcher for the given configuration."""
    if config.mock_mode:
        return MockRepoFetcher()
    return RepoFetcher(settings=config.fetch)
