import asyncio
import base64

import httpx
import pytest

from sourceiq.models.errors import InvalidRepoUrlError, UpstreamFetchError
from sourceiq.utils.github import GitHubClient, parse_repo_url
from sourceiq.utils.http import HttpClient


def _b64(text):
    return base64.b64encode(text.encode()).decode()


def _github_handler(request):
    path = request.url.path
    if path == "/repos/acme/widgets":
        return httpx.Response(200, json={"name": "widgets", "full_name": "acme/widgets", "size": 2048})
    if path == "/repos/acme/widgets/languages":
        return httpx.Response(200, json={"Python": 5000})
    if path == "/repos/acme/widgets/contents":
        return httpx.Response(
            200,
            json=[
                {"name": "tests", "path": "tests", "type": "dir"},
                {"name": ".github", "path": ".github", "type": "dir"},
                {"name": "Dockerfile", "path": "Dockerfile", "type": "file"},
            ],
        )
    if path == "/repos/acme/widgets/readme":
        return httpx.Response(200, json={"content": _b64("# Widgets\n")})
    if path == "/repos/acme/widgets/commits":
        return httpx.Response(200, json=[{"sha": "abc", "commit": {"message": "init"}}])
    return httpx.Response(404, json={"message": "Not Found"})


def _fetch(handler, owner="acme", repo="widgets"):
    async def _run():
        http = HttpClient(retries=0, transport=httpx.MockTransport(handler))
        try:
            return await GitHubClient(http, token="ghp_test").fetch_repository(owner, repo)
        finally:
            await http.close()

    return asyncio.run(_run())


def test_fetch_repository_builds_snapshot():
    snapshot = _fetch(_github_handler)
    assert snapshot.full_name == "acme/widgets"
    assert snapshot.languages == {"Python": 5000}
    assert snapshot.readme == "# Widgets\n"
    assert snapshot.package_json is None
    assert snapshot.contributors == []
    assert len(snapshot.commits) == 1
    assert snapshot.has_tests and snapshot.has_ci and snapshot.has_dockerfile


def test_package_json_dependencies_are_parsed():
    def handler(request):
        if request.url.path == "/repos/acme/widgets/contents/package.json":
            return httpx.Response(200, json={"content": _b64('{"dependencies": {"react": "^18.0.0"}}')})
        return _github_handler(request)

    snapshot = _fetch(handler)
    assert snapshot.dependencies == {"react": "^18.0.0"}


def test_missing_repository_maps_to_not_found():
    with pytest.raises(UpstreamFetchError) as excinfo:
        _fetch(_github_handler, repo="missing")
    assert excinfo.value.status == 404
    assert "not found" in str(excinfo.value).lower()


def test_rate_limit_maps_to_403():
    with pytest.raises(UpstreamFetchError) as excinfo:
        _fetch(lambda request: httpx.Response(403, json={"message": "API rate limit exceeded"}))
    assert excinfo.value.status == 403
    assert "rate limit" in str(excinfo.value)


def test_token_is_sent_as_authorization_header():
    seen = []

    def handler(request):
        seen.append(request.headers.get("authorization"))
        return _github_handler(request)

    _fetch(handler)
    assert seen and all(value == "token ghp_test" for value in seen)


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://github.com/acme/widgets", ("acme", "widgets")),
        ("https://github.com/acme/widgets.git", ("acme", "widgets")),
        ("github.com/acme/widgets/tree/main", ("acme", "widgets")),
    ],
)
def test_parse_repo_url(url, expected):
    assert parse_repo_url(url) == expected


def test_parse_repo_url_rejects_other_hosts():
    with pytest.raises(InvalidRepoUrlError):
        parse_repo_url("https://gitlab.com/acme/widgets")
