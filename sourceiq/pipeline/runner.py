from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import httpx

from .. import __version__
from ..models.config import AnalysisConfig, RunConfig
from ..models.errors import (
    AnalysisAbortedError,
    AnalysisFailedError,
    InsufficientResultsError,
    InvalidRepoUrlError,
    UpstreamFetchError,
)
from ..models.results import CORE_DIMENSIONS, CompositeReport, DispatchSummary, RepoSnapshot
from ..modules.aggregator import aggregate
from ..modules.fallback import build_fallback_report
from ..modules.prompts import build_prompts
from .context import RunContext
from .dispatcher import Dispatcher
from ..reporting.csv_backlog import build_csv
from ..reporting.markdown import build_summary
from ..utils.gemini import GeminiInvoker
from ..utils.github import GitHubClient, parse_repo_url
from ..utils.http import HttpClient
from ..utils.key_pool import KeyPool
from ..utils.ledger import CallLedger
from ..utils.normalize import mask_credential
from ..utils.rate_limit import AsyncRateLimiter

logger = logging.getLogger(__name__)


def _write_json(path: str, data: dict) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, default=str)


def build_context(
    config: AnalysisConfig,
    pool: KeyPool | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> RunContext:
    ledger = CallLedger()
    limiter = AsyncRateLimiter(config.github_requests_per_minute)
    github_http = HttpClient(
        timeout_seconds=config.request_timeout_seconds,
        retries=config.http_retries,
        rate_limiter=limiter,
        ledger=ledger,
        category="github_http",
        transport=transport,
    )
    model_http = HttpClient(
        timeout_seconds=config.request_timeout_seconds,
        retries=0,
        ledger=ledger,
        category="model_http",
        transport=transport,
    )
    invoker = GeminiInvoker(
        model_http,
        model=config.model,
        temperature=config.temperature,
        max_output_tokens=config.max_output_tokens,
    )
    return RunContext(
        config=config,
        pool=pool or KeyPool(config.credentials),
        ledger=ledger,
        github_http=github_http,
        model_http=model_http,
        github=GitHubClient(github_http, token=config.github_token),
        invoker=invoker,
    )


async def fetch_snapshot(context: RunContext, repo_url: str) -> RepoSnapshot:
    try:
        owner, repo = parse_repo_url(repo_url)
        snapshot = await context.github.fetch_repository(owner, repo)
    except (InvalidRepoUrlError, UpstreamFetchError) as exc:
        raise AnalysisAbortedError(f"Failed to fetch repository data: {exc}") from exc
    logger.info(
        "repository data fetched",
        extra={"repo": snapshot.full_name, "files": len(snapshot.files), "commits": len(snapshot.commits)},
    )
    return snapshot


async def analyze(context: RunContext, repo_url: str) -> CompositeReport:
    """Fetch, dispatch and aggregate one repository using an existing context.

    Raises AnalysisAbortedError before any model call when the repository
    cannot be fetched. Too few successful dimensions yields a report with
    ``source="fallback"`` instead of an error.
    """
    snapshot = await fetch_snapshot(context, repo_url)
    templates = build_prompts(snapshot, repo_url)
    dispatcher = Dispatcher(context.pool, context.invoker, context.config.dispatch, context.ledger)

    try:
        results = await dispatcher.run(templates)
    except InsufficientResultsError as exc:
        logger.warning(
            "dynamic analysis incomplete; building fallback report",
            extra={"succeeded": exc.success_count, "required": exc.required},
        )
        attempts = context.ledger.totals()["counts"].get("model_attempt", 0)
        try:
            return build_fallback_report(
                repo_url,
                snapshot,
                DispatchSummary(failed=list(CORE_DIMENSIONS), total_attempts=attempts),
            )
        except Exception as fallback_exc:
            raise AnalysisFailedError(f"{exc}; fallback report failed: {fallback_exc}") from fallback_exc

    summary = DispatchSummary(succeeded=results.succeeded, failed=results.failed, total_attempts=results.total_attempts)
    report = aggregate(results.records, snapshot, repo_url, overall=results.overall, dispatch_summary=summary)
    logger.info(
        "analysis complete",
        extra={"repo": snapshot.full_name, "overall_score": report.home_page.overall_score, "succeeded": len(results.succeeded)},
    )
    return report


async def analyze_repo(
    repo_url: str,
    config: AnalysisConfig,
    pool: KeyPool | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CompositeReport:
    context = build_context(config, pool=pool, transport=transport)
    try:
        return await analyze(context, repo_url)
    finally:
        await context.close()


def analyze_repo_sync(repo_url: str, config: AnalysisConfig) -> CompositeReport:
    return asyncio.run(analyze_repo(repo_url, config))


def _build_manifest(run_config: RunConfig, context: RunContext) -> dict:
    redacted = run_config.model_dump()
    analysis = redacted["analysis"]
    analysis["credentials"] = [mask_credential(k) for k in analysis.get("credentials") or []]
    if analysis.get("github_token"):
        analysis["github_token"] = "***"
    return {
        "tool_version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "config": redacted,
        "key_pool": context.pool.stats(),
        "ledger_totals": context.ledger.totals(),
    }


def write_run_artifacts(run_path: str, report: CompositeReport, manifest: dict | None = None) -> dict[str, str]:
    payload = report.model_dump(mode="json")
    paths = {
        "report": f"{run_path}/report.json",
        "summary": f"{run_path}/summary.md",
        "roadmap": f"{run_path}/roadmap.csv",
    }
    _write_json(paths["report"], payload)
    with open(paths["summary"], "w", encoding="utf-8") as f:
        f.write(build_summary(payload))
    with open(paths["roadmap"], "w", encoding="utf-8", newline="") as f:
        f.write(build_csv(payload))
    if manifest is not None:
        paths["manifest"] = f"{run_path}/run_manifest.json"
        _write_json(paths["manifest"], manifest)
    return paths


async def run_analysis(run_config: RunConfig, transport: httpx.AsyncBaseTransport | None = None) -> dict:
    context = build_context(run_config.analysis, transport=transport)
    run_path = run_config.run_path
    try:
        report = await analyze(context, run_config.repo_url)
    finally:
        await context.close()
        if run_path:
            _write_json(f"{run_path}/call_ledger.json", context.ledger.to_dict())

    artifacts = {}
    if run_path:
        artifacts = write_run_artifacts(run_path, report, _build_manifest(run_config, context))
    return {"run_id": run_config.run_id, "run_path": run_path, "artifacts": artifacts, "report": report.model_dump(mode="json")}


def run_analysis_sync(run_config: RunConfig) -> dict:
    return asyncio.run(run_analysis(run_config))
