from __future__ import annotations

from datetime import datetime, timezone
from typing import Mapping, Optional

from ..models.results import (
    CORE_DIMENSIONS,
    CompositeReport,
    CriticalFlags,
    DimensionMap,
    DispatchSummary,
    HomePage,
    ImprovementItem,
    ModuleMap,
    ModuleRecord,
    OverallAssessment,
    RepoMetadata,
    RepoSnapshot,
    ReportSource,
    SecurityRecord,
    TeamRole,
    maturity_for_score,
)
from .parser import default_record, default_vulnerability

RISK_DIMENSIONS = ("structure", "security", "performance")
ROADMAP_DIMENSIONS = ("structure", "code_quality", "testing", "security", "deployment")
MAX_RISKS = 3
MAX_ROADMAP_ITEMS = 8
ROADMAP_LABEL = "Technical"
ROADMAP_REASON = "Improve code quality and maintainability"

MODULE_SOURCES = {
    "structure": "structure",
    "code_quality": "code_quality",
    "documentation": "documentation",
    "testing": "testing",
    "version_control": "version_control",
    "security": "security",
    "operational": "deployment",
    "professionalism": "version_control",
    "business": "business_alignment",
    "scalability": "performance",
}

DEFAULT_TEAM = (
    TeamRole(role="Senior Developer", count=1, justification="Lead architecture and code quality improvements"),
    TeamRole(role="DevOps Engineer", count=1, justification="Improve deployment and operational practices"),
)


def resolve_dimensions(records: Mapping[str, ModuleRecord]) -> DimensionMap:
    resolved: dict[str, ModuleRecord] = {}
    for dimension in CORE_DIMENSIONS:
        record = records.get(dimension) or default_record(dimension)
        if dimension == "security":
            record = _as_security(record)
        resolved[dimension] = record
    return DimensionMap(**resolved)


def _as_security(record: ModuleRecord) -> SecurityRecord:
    data = record.model_dump()
    if not data.get("vulnerabilities"):
        data["vulnerabilities"] = [default_vulnerability().model_dump()]
    return SecurityRecord.model_validate(data)


def overall_score(dimensions: DimensionMap) -> int:
    scores = list(dimensions.scores().values())
    # half-up, not banker's rounding
    return int(sum(scores) / len(scores) + 0.5)


def risk_snapshot(dimensions: DimensionMap) -> list[str]:
    risks: list[str] = []
    for dimension in RISK_DIMENSIONS:
        risks.extend(dimensions.get(dimension).hidden_risks)
    return risks[:MAX_RISKS]


def improvement_roadmap(dimensions: DimensionMap) -> list[ImprovementItem]:
    steps: list[str] = []
    for dimension in ROADMAP_DIMENSIONS:
        steps.extend(dimensions.get(dimension).remediation_steps)
    return [ImprovementItem(dimension=ROADMAP_LABEL, action=step, reason=ROADMAP_REASON) for step in steps[:MAX_ROADMAP_ITEMS]]


def _age_months(created_at: Optional[str], now: datetime) -> int:
    if not created_at:
        return 12
    try:
        created = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    except ValueError:
        return 12
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return max(0, round((now - created).days / 30))


def repo_metadata(meta: Optional[RepoSnapshot], repo_name: str, now: datetime) -> RepoMetadata:
    if meta is None:
        return RepoMetadata(name=repo_name)
    return RepoMetadata(
        name=meta.repo.get("name") or repo_name,
        language_stack=list(meta.languages) or ["Unknown"],
        age_months=_age_months(meta.repo.get("created_at"), now),
        stars=int(meta.repo.get("stargazers_count") or 0),
        forks=int(meta.repo.get("forks_count") or 0),
    )


def critical_flags(dimensions: DimensionMap, meta: Optional[RepoSnapshot]) -> CriticalFlags:
    dependency_count = len(meta.dependencies) if meta else 0
    return CriticalFlags(
        has_tests=bool(meta and meta.has_tests) or dimensions.testing.score > 50,
        has_readme=bool(meta and meta.readme is not None) or dimensions.documentation.score > 50,
        has_license=bool(meta and meta.repo.get("license")),
        secrets_detected=dimensions.security.score < 70,
        unused_dependencies=max(0, dependency_count - 20) if dimensions.dependencies.score < 70 else 0,
    )


def _repo_name(repo_url: str) -> str:
    tail = repo_url.rstrip("/").split("/")[-1] if repo_url else ""
    return tail.removesuffix(".git") or "Unknown Repository"


def aggregate(
    records: Mapping[str, ModuleRecord],
    repo_meta: Optional[RepoSnapshot],
    repo_url: str,
    source: ReportSource = ReportSource.dynamic,
    overall: Optional[OverallAssessment] = None,
    dispatch_summary: Optional[DispatchSummary] = None,
) -> CompositeReport:
    """Merge per-dimension records into one fully populated report.

    Missing dimensions take the default record, so the output shape does not
    depend on how many prompts succeeded.
    """
    now = datetime.now(timezone.utc)
    dimensions = resolve_dimensions(records)
    score = overall_score(dimensions)
    maturity = maturity_for_score(score)
    metadata = repo_metadata(repo_meta, _repo_name(repo_url), now)

    home_page = HomePage(
        overview=f"Comprehensive analysis of {metadata.name} repository",
        executive_summary=f"Repository scored {score}/100 with {maturity.value.lower()} maturity level",
        overall_score=score,
        maturity_level=maturity,
        risk_snapshot=risk_snapshot(dimensions),
        team_recommendation=list(DEFAULT_TEAM),
    )
    if source == ReportSource.fallback:
        home_page.executive_summary += " (fallback data: live analysis was unavailable)"

    modules = ModuleMap(**{slot: dimensions.get(origin) for slot, origin in MODULE_SOURCES.items()})

    return CompositeReport(
        repo_url=repo_url,
        source=source,
        generated_at=now,
        repo_metadata=metadata,
        critical_flags=critical_flags(dimensions, repo_meta),
        home_page=home_page,
        dimensions=dimensions,
        modules=modules,
        overall_assessment=overall or OverallAssessment(maturity_level=maturity),
        improvement_roadmap=improvement_roadmap(dimensions),
        dispatch_summary=dispatch_summary
        or DispatchSummary(
            succeeded=[d for d in CORE_DIMENSIONS if d in records],
            failed=[d for d in CORE_DIMENSIONS if d not in records],
        ),
    )
