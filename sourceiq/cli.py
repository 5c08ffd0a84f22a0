from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

import typer
from pydantic import ValidationError

from .models.config import AnalysisConfig, DispatchConfig, RunConfig
from .models.errors import SourceIQError
from .models.results import ChatMessage, CompositeReport
from .modules.chat import chat_with_repo
from .pipeline.runner import run_analysis_sync, write_run_artifacts
from .utils.gemini import GeminiInvoker
from .utils.http import HttpClient
from .utils.key_pool import KeyPool
from .utils.normalize import parse_credentials

app = typer.Typer(add_completion=False)

REQUIRED_REPORT_FIELDS = ("repo_url", "home_page", "dimensions", "modules", "critical_flags", "improvement_roadmap")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "time": datetime.now(timezone.utc).isoformat(),
        }
        return json.dumps(payload)


def setup_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level.upper(), handlers=[handler], force=True)


def _fail(message: str) -> None:
    typer.echo(message, err=True)
    raise typer.Exit(1)


def _load_json(path: Path) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        _fail(f"invalid JSON: {exc}")
    if not isinstance(data, dict):
        _fail("invalid JSON: expected an object")
    return data


@app.command()
def analyze(
    url: str = typer.Option(..., "--url", help="GitHub repository URL."),
    out: str | None = typer.Option("./output", "--out", help="Directory for run artifacts."),
    api_keys: str | None = typer.Option(
        None,
        "--api-keys",
        envvar=["GEMINI_API_KEY", "VITE_GEMINI_API_KEY"],
        help="Comma-separated model API keys.",
    ),
    github_token: str | None = typer.Option(
        None, "--github-token", envvar=["GITHUB_TOKEN", "VITE_GITHUB_TOKEN"]
    ),
    model: str = typer.Option("gemini-2.5-flash", "--model"),
    min_successes: int = typer.Option(5, "--min-successes"),
    retry_failed_wave: bool = typer.Option(False, "--retry-failed-wave"),
    as_json: bool = typer.Option(False, "--json", help="Print the full report as JSON."),
    log_level: str = typer.Option("INFO", "--log-level"),
) -> None:
    """Analyze a public GitHub repository."""
    setup_logging(log_level)
    analysis = AnalysisConfig(
        credentials=parse_credentials(api_keys),
        github_token=github_token or None,
        model=model,
        dispatch=DispatchConfig(min_successes=min_successes, retry_failed_wave=retry_failed_wave),
    )
    config = RunConfig(
        repo_url=url,
        out_dir=out or None,
        run_id=str(uuid4()),
        timestamp=datetime.now(timezone.utc),
        analysis=analysis,
    )
    try:
        result = run_analysis_sync(config)
    except SourceIQError as exc:
        _fail(str(exc))

    if as_json:
        typer.echo(json.dumps(result["report"], indent=2, default=str))
        return
    home = result["report"]["home_page"]
    typer.echo(f"{home['executive_summary']} [{result['report']['source']}]")
    if result["run_path"]:
        typer.echo(f"artifacts written to {result['run_path']}")


@app.command()
def chat(
    report_path: str = typer.Option(..., "--report", help="Path to a report.json from a previous run."),
    message: str = typer.Option(..., "--message"),
    history_path: str | None = typer.Option(None, "--history", help="JSON list of {role, text} messages."),
    api_keys: str | None = typer.Option(None, "--api-keys", envvar=["GEMINI_API_KEY", "VITE_GEMINI_API_KEY"]),
    model: str = typer.Option("gemini-2.5-flash", "--model"),
    timeout: float = typer.Option(45.0, "--timeout"),
    log_level: str = typer.Option("WARNING", "--log-level"),
) -> None:
    """Ask a follow-up question about an analyzed repository."""
    setup_logging(log_level)
    try:
        report = CompositeReport.model_validate(_load_json(Path(report_path)))
    except ValidationError as exc:
        _fail(f"invalid report: {exc.error_count()} validation errors")

    history: list[ChatMessage] = []
    if history_path:
        try:
            raw = json.loads(Path(history_path).read_text(encoding="utf-8"))
            history = [ChatMessage.model_validate(item) for item in raw]
        except (OSError, ValueError, TypeError) as exc:
            _fail(f"invalid history: {exc}")

    async def _ask() -> str:
        http = HttpClient(timeout_seconds=timeout, retries=0)
        try:
            invoker = GeminiInvoker(http, model=model)
            return await chat_with_repo(history, message, report, KeyPool(parse_credentials(api_keys)), invoker, timeout)
        finally:
            await http.close()

    typer.echo(asyncio.run(_ask()))


@app.command()
def report(input: str = typer.Option(..., "--input", help="Run directory containing report.json.")) -> None:
    """Regenerate summary and roadmap artifacts from an existing run directory."""
    setup_logging()
    path = Path(input)
    report_path = path / "report.json"
    if not report_path.exists():
        _fail("report.json not found")
    try:
        parsed = CompositeReport.model_validate(_load_json(report_path))
    except ValidationError as exc:
        _fail(f"invalid report: {exc.error_count()} validation errors")

    write_run_artifacts(str(path), parsed)
    typer.echo("reports generated")


@app.command()
def validate(input: str = typer.Option(..., "--input")) -> None:
    """Validate report.json structure."""
    setup_logging()
    data = _load_json(Path(input))

    missing = [field for field in REQUIRED_REPORT_FIELDS if field not in data]
    if missing:
        _fail(f"missing fields: {', '.join(missing)}")
    try:
        CompositeReport.model_validate(data)
    except ValidationError as exc:
        _fail(f"invalid report: {exc.error_count()} validation errors")

    typer.echo("valid")
