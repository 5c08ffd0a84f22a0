import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest

from sourceiq.models.config import AnalysisConfig, DispatchConfig, RunConfig
from sourceiq.models.errors import AnalysisAbortedError
from sourceiq.models.results import ReportSource
from sourceiq.pipeline.runner import analyze_repo, run_analysis

KEY = "AIzaSyRunnerKey00000000000000000000000"
REPO_URL = "https://github.com/acme/widgets"


def _config():
    return AnalysisConfig(
        credentials=[KEY],
        github_requests_per_minute=60_000,
        dispatch=DispatchConfig(
            overload_backoff_seconds=0,
            network_backoff_seconds=0,
            unknown_backoff_seconds=0,
        ),
    )


def _handler(model_status=200, github_status=200, calls=None):
    calls = calls if calls is not None else []

    def handler(request):
        calls.append(request.url.host)
        if request.url.host == "api.github.com":
            if github_status != 200:
                return httpx.Response(github_status, json={"message": "nope"})
            if request.url.path == "/repos/acme/widgets":
                return httpx.Response(200, json={"name": "widgets", "full_name": "acme/widgets"})
            if request.url.path == "/repos/acme/widgets/languages":
                return httpx.Response(200, json={"Python": 100})
            return httpx.Response(404, json={"message": "Not Found"})
        if model_status != 200:
            return httpx.Response(model_status, text="UNAVAILABLE")
        text = json.dumps({"score": 82, "strengths": ["Readable"], "hidden_risks": ["Few tests"]})
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})

    return handler


def test_successful_analysis_is_dynamic():
    report = asyncio.run(analyze_repo(REPO_URL, _config(), transport=httpx.MockTransport(_handler())))
    assert report.source == ReportSource.dynamic
    assert report.home_page.overall_score == 82
    assert report.dispatch_summary.failed == []
    assert report.repo_metadata.name == "widgets"


def test_model_outage_yields_fallback_report():
    report = asyncio.run(analyze_repo(REPO_URL, _config(), transport=httpx.MockTransport(_handler(model_status=503))))
    assert report.source == ReportSource.fallback
    assert "fallback" in report.home_page.executive_summary
    assert report.dispatch_summary.total_attempts > 0


def test_github_failure_aborts_before_model_calls():
    calls = []
    transport = httpx.MockTransport(_handler(github_status=404, calls=calls))
    with pytest.raises(AnalysisAbortedError):
        asyncio.run(analyze_repo(REPO_URL, _config(), transport=transport))
    assert "generativelanguage.googleapis.com" not in calls


def test_invalid_url_aborts():
    with pytest.raises(AnalysisAbortedError):
        asyncio.run(analyze_repo("https://example.com/not-a-repo", _config(), transport=httpx.MockTransport(_handler())))


def test_run_analysis_writes_artifacts(tmp_path):
    config = RunConfig(
        repo_url=REPO_URL,
        out_dir=str(tmp_path),
        run_id="r1",
        timestamp=datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc),
        analysis=_config().model_copy(update={"github_token": "ghp_secret"}),
    )
    result = asyncio.run(run_analysis(config, transport=httpx.MockTransport(_handler())))

    run_path = Path(result["run_path"])
    assert run_path == tmp_path / "20240501_120000"
    for name in ("report.json", "summary.md", "roadmap.csv", "run_manifest.json", "call_ledger.json"):
        assert (run_path / name).exists()

    manifest_text = (run_path / "run_manifest.json").read_text(encoding="utf-8")
    assert KEY not in manifest_text
    assert "ghp_secret" not in manifest_text
    manifest = json.loads(manifest_text)
    assert manifest["key_pool"]["total"] == 1
    assert manifest["ledger_totals"]["counts"]["model_attempt"] == 11
    assert json.loads((run_path / "report.json").read_text(encoding="utf-8"))["source"] == "dynamic"
