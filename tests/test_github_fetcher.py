"""Tests for fetching repository files from GitHub."""

from __future__ import annotations

import httpx
import pytest

from vibearchitect.config import Config, FetchSettings
from vibearchitect.github_fetcher import (
    InvalidRepoUrlError,
    MockRepoFetcher,
    RepoFetchError,
    RepoFetcher,
    RepoLocator,
    TreeItem,
    create_repo_fetcher,
    is_relevant_path,
    parse_repo_url,
    prioritize,
)


def github_handler(tree: list[dict], contents: dict[str, str], branch: str = "main", failing=()):
    """Build a mock transport handler serving repo metadata, tree and raw files."""

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url == "https://api.github.com/repos/acme/app":
            return httpx.Response(200, json={"default_branch": branch})
        if url.startswith(f"https://api.github.com/repos/acme/app/git/trees/{branch}"):
            return httpx.Response(200, json={"tree": tree, "truncated": False})
        prefix = f"https://raw.githubusercontent.com/acme/app/{branch}/"
        if url.startswith(prefix):
            path = url[len(prefix):]
            if path in failing:
                return httpx.Response(500, text="boom")
            return httpx.Response(200, text=contents.get(path, ""))
        return httpx.Response(404, json={"message": "Not Found"})

    return handler


def blob(path: str, size: int = 10) -> dict:
    return {"path": path, "type": "blob", "size": size}


def make_fetcher(handler, **settings) -> RepoFetcher:
    return RepoFetcher(
        settings=FetchSettings(**settings),
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


class TestParseRepoUrl:
    """Tests for parse_repo_url."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/acme/app",
            "https://github.com/acme/app/",
            "https://github.com/acme/app.git",
            "github.com/acme/app",
            "acme/app",
            "  https://github.com/acme/app  ",
        ],
    )
    def test_valid_locators(self, url: str) -> None:
        """Test accepted locator forms."""
        assert parse_repo_url(url) == RepoLocator(owner="acme", repo="app")

    @pytest.mark.parametrize("url", ["", "app", "https://github.com/", "https://github.com/acme"])
    def test_invalid_locators(self, url: str) -> None:
        """Test rejected locators."""
        with pytest.raises(InvalidRepoUrlError, match="Invalid GitHub URL format"):
            parse_repo_url(url)

    def test_invalid_url_is_fetch_error(self) -> None:
        """Test that invalid locators are also RepoFetchError."""
        assert issubclass(InvalidRepoUrlError, RepoFetchError)


class TestFiltering:
    """Tests for path filtering and ordering."""

    def test_relevant_paths(self) -> None:
        """Test extension allow-list and exclusions."""
        settings = FetchSettings()

        assert is_relevant_path("App.tsx", settings)
        assert is_relevant_path("src/utils/helpers.py", settings)
        assert not is_relevant_path("logo.png", settings)
        assert not is_relevant_path("package-lock.json", settings)
        assert not is_relevant_path("node_modules/react/index.js", settings)
        assert not is_relevant_path("dist/bundle.js", settings)
        assert not is_relevant_path("build/main.js", settings)

    def test_prioritize_manifest_then_depth(self) -> None:
        """Test that package.json comes first, then shallower paths."""
        items = [
            TreeItem("components/deep/Button.tsx"),
            TreeItem("components/Card.tsx"),
            TreeItem("App.tsx"),
            TreeItem("package.json"),
        ]

        ordered = [item.path for item in prioritize(items, FetchSettings())]

        assert ordered == [
            "package.json",
            "App.tsx",
            "components/Card.tsx",
            "components/deep/Button.tsx",
        ]

    def test_prioritize_is_stable(self) -> None:
        """Test that equal-depth paths keep tree order."""
        items = [TreeItem("b.ts"), TreeItem("a.ts")]

        assert [i.path for i in prioritize(items, FetchSettings())] == ["b.ts", "a.ts"]


class TestRepoFetcher:
    """Tests for RepoFetcher against a mock transport."""

    def test_fetch_filters_sorts_and_reads(self) -> None:
        """Test the full fetch flow."""
        tree = [
            blob("components/Card.tsx"),
            blob("package.json"),
            blob("logo.png"),
            blob("package-lock.json"),
            {"path": "components", "type": "tree"},
            blob("App.tsx"),
        ]
        contents = {
            "package.json": '{"name": "app"}',
            "App.tsx": "export default App",
            "components/Card.tsx": "export const Card = 1",
        }
        fetcher = make_fetcher(github_handler(tree, contents))

        files = fetcher.fetch("https://github.com/acme/app")

        assert [f.path for f in files] == ["package.json", "App.tsx", "components/Card.tsx"]
        assert files[1].content == "export default App"
        assert files[0].size == 10

    def test_fetch_uses_default_branch(self) -> None:
        """Test that a non-main default branch is used for tree and content."""
        tree = [blob("index.ts")]
        fetcher = make_fetcher(github_handler(tree, {"index.ts": "x"}, branch="develop"))

        files = fetcher.fetch("acme/app")

        assert [f.content for f in files] == ["x"]

    def test_fetch_caps_file_count(self) -> None:
        """Test that at most max_files files are downloaded."""
        tree = [blob(f"file{i}.ts") for i in range(10)]
        fetcher = make_fetcher(github_handler(tree, {}), max_files=3)

        assert len(fetcher.fetch("acme/app")) == 3

    def test_failed_file_is_omitted(self) -> None:
        """Test that a failing download is skipped, not fatal."""
        tree = [blob("a.ts"), blob("b.ts")]
        fetcher = make_fetcher(
            github_handler(tree, {"a.ts": "A", "b.ts": "B"}, failing={"a.ts"})
        )

        files = fetcher.fetch("acme/app")

        assert [f.path for f in files] == ["b.ts"]

    def test_missing_repo_raises(self) -> None:
        """Test that an unreadable repository raises RepoFetchError."""
        fetcher = make_fetcher(github_handler([], {}))

        with pytest.raises(RepoFetchError, match="Ensure repo is public"):
            fetcher.fetch("acme/other")

    def test_invalid_url_makes_no_request(self) -> None:
        """Test that locator validation happens before any network call."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={})

        with pytest.raises(InvalidRepoUrlError):
            make_fetcher(handler).fetch("not-a-repo")

        assert requests == []

    def test_empty_repository(self) -> None:
        """Test that a repository with no relevant files returns an empty list."""
        fetcher = make_fetcher(github_handler([blob("image.png")], {}))

        assert fetcher.fetch("acme/app") == []


class TestMockRepoFetcher:
    """Tests for MockRepoFetcher and the factory."""

    def test_returns_files(self) -> None:
        """Test canned files and request recording."""
        fetcher = MockRepoFetcher()

        files = fetcher.fetch("acme/app")

        assert [f.path for f in files] == ["package.json", "App.tsx"]
        assert fetcher.requested == ["acme/app"]

    def test_validates_locator(self) -> None:
        """Test that the mock rejects malformed locators too."""
        with pytest.raises(InvalidRepoUrlError):
            MockRepoFetcher().fetch("nope")

    def test_configured_error(self) -> None:
        """Test that a configured error is raised."""
        fetcher = MockRepoFetcher(error=RepoFetchError("down"))

        with pytest.raises(RepoFetchError, match="down"):
            fetcher.fetch("acme/app")

    def test_factory(self) -> None:
        """Test create_repo_fetcher in both modes."""
        assert isinstance(create_repo_fetcher(Config(mock_mode=True)), MockRepoFetcher)
        assert isinstance(create_repo_fetcher(Config(gemini_api_key="k")), RepoFetcher)
