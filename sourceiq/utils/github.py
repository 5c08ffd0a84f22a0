from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from typing import Any, Optional

import httpx

from ..models.errors import InvalidRepoUrlError, UpstreamFetchError
from ..models.results import RepoSnapshot
from .http import HttpClient, ResponseTooLargeError

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
REPO_URL_RE = re.compile(r"github\.com/([^/\s]+)/([^/\s?#]+)")

TEST_INDICATORS = (
    "test",
    "tests",
    "__tests__",
    "spec",
    "specs",
    ".test.",
    ".spec.",
    "jest.config",
    "vitest.config",
    "pytest.ini",
    "tox.ini",
    "cypress",
    "playwright",
)
CI_INDICATORS = (
    ".github",
    ".gitlab-ci",
    "jenkins",
    "travis",
    "circle",
    "azure-pipelines",
    "buildkite",
    "github-actions",
    "workflows",
)


def parse_repo_url(url: str) -> tuple[str, str]:
    match = REPO_URL_RE.search(url or "")
    if not match:
        raise InvalidRepoUrlError(f"not a GitHub repository URL: {url!r}")
    owner, repo = match.group(1), match.group(2)
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return owner, repo


def _matches_any(entries: list[dict], indicators: tuple[str, ...]) -> bool:
    for entry in entries:
        name = str(entry.get("name") or "").lower()
        path = str(entry.get("path") or "").lower()
        if any(ind in name or ind in path for ind in indicators):
            return True
    return False


def has_tests(entries: list[dict]) -> bool:
    return _matches_any(entries, TEST_INDICATORS)


def has_ci(entries: list[dict]) -> bool:
    return _matches_any(entries, CI_INDICATORS)


def has_dockerfile(entries: list[dict]) -> bool:
    return any("docker" in str(e.get("name") or "").lower() for e in entries)


def _decode_content(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict) or not payload.get("content"):
        return None
    try:
        return base64.b64decode(str(payload["content"]).replace("\n", "")).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return None


class GitHubClient:
    def __init__(self, http: HttpClient, token: str | None = None, base_url: str = GITHUB_API) -> None:
        self.http = http
        self.token = token
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> dict:
        headers = {"Accept": "application/vnd.github.v3+json", "User-Agent": "SourceIQ-Analyzer"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    async def _get_json(self, path: str) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = await self.http.get(url, headers=self._headers())
        except (httpx.HTTPError, ResponseTooLargeError) as exc:
            raise UpstreamFetchError(f"GitHub request failed for {path}: {exc}") from exc

        if resp.status_code == 404:
            raise UpstreamFetchError(f"Repository not found or private: {resp.status_code}", status=404)
        if resp.status_code == 403:
            raise UpstreamFetchError(f"GitHub API rate limit exceeded: {resp.status_code}", status=403)
        if resp.status_code >= 400:
            raise UpstreamFetchError(f"GitHub API error: {resp.status_code} {resp.reason_phrase}", status=resp.status_code)
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamFetchError(f"GitHub returned invalid JSON for {path}") from exc

    async def _get_optional(self, path: str) -> Any:
        try:
            return await self._get_json(path)
        except UpstreamFetchError as exc:
            if exc.status == 404:
                return None
            raise

    async def fetch_repository(self, owner: str, repo: str) -> RepoSnapshot:
        prefix = f"/repos/{owner}/{repo}"
        repo_data = await self._get_json(prefix)
        languages = await self._get_json(f"{prefix}/languages")
        commits = await self._get_optional(f"{prefix}/commits?per_page=20")
        contributors = await self._get_optional(f"{prefix}/contributors?per_page=10")
        branches = await self._get_optional(f"{prefix}/branches")
        contents = await self._get_optional(f"{prefix}/contents")

        readme = _decode_content(await self._get_optional(f"{prefix}/readme"))

        package_json = None
        package_raw = _decode_content(await self._get_optional(f"{prefix}/contents/package.json"))
        if package_raw:
            try:
                package_json = json.loads(package_raw)
            except json.JSONDecodeError:
                logger.warning("package.json is not valid JSON", extra={"repo": f"{owner}/{repo}"})

        entries = contents if isinstance(contents, list) else []
        return RepoSnapshot(
            repo=repo_data if isinstance(repo_data, dict) else {},
            languages=languages if isinstance(languages, dict) else {},
            files=entries,
            commits=commits if isinstance(commits, list) else [],
            contributors=contributors if isinstance(contributors, list) else [],
            branches=branches if isinstance(branches, list) else [],
            readme=readme,
            package_json=package_json if isinstance(package_json, dict) else None,
            has_tests=has_tests(entries),
            has_ci=has_ci(entries),
            has_dockerfile=has_dockerfile(entries),
        )
