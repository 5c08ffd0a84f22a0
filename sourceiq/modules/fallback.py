from __future__ import annotations

from typing import Optional

from ..models.results import CompositeReport, DispatchSummary, ModuleRecord, RepoSnapshot, ReportSource, SecurityRecord
from .aggregator import aggregate

# Canned per-dimension findings used when live analysis cannot produce enough
# results. Scores are illustrative and the report is labeled as fallback.
FALLBACK_FINDINGS: dict[str, dict] = {
    "structure": {
        "score": 78,
        "strengths": ["Clear separation between modules", "Conventional directory layout"],
        "weaknesses": ["Some modules mix several responsibilities", "Configuration is spread across files"],
        "hidden_risks": ["Coupling will grow as features are added", "No explicit boundary for shared state"],
        "real_world_impact": "The layout supports a small team but will need refactoring as it grows.",
        "failure_scenario": "Without refactoring, changes start touching many unrelated files.",
        "remediation_steps": ["Split oversized modules by responsibility", "Centralize configuration loading"],
    },
    "code_quality": {
        "score": 82,
        "strengths": ["Consistent naming", "Readable function bodies"],
        "weaknesses": ["Inconsistent error handling", "Sparse inline documentation"],
        "hidden_risks": ["Unhandled errors surface late in production"],
        "real_world_impact": "Code quality supports current velocity but needs hardening for production.",
        "failure_scenario": "Edge-case errors escape to users because handling is ad hoc.",
        "remediation_steps": ["Adopt one error handling pattern", "Enable a linter in CI"],
    },
    "documentation": {
        "score": 65,
        "strengths": ["README describes the project purpose"],
        "weaknesses": ["Setup instructions are incomplete", "No contributing guide"],
        "hidden_risks": ["Onboarding depends on the original authors"],
        "real_world_impact": "Documentation gaps slow down onboarding.",
        "failure_scenario": "New contributors misconfigure the project and give up.",
        "remediation_steps": ["Document setup end to end", "Add a contributing guide"],
    },
    "testing": {
        "score": 45,
        "strengths": ["Structure allows tests to be added"],
        "weaknesses": ["Few or no automated tests", "No integration tests"],
        "hidden_risks": ["Regressions reach production unnoticed"],
        "real_world_impact": "Missing tests make every change risky.",
        "failure_scenario": "A refactor silently breaks a core path.",
        "remediation_steps": ["Add unit tests for core logic", "Run tests on every pull request"],
    },
    "version_control": {
        "score": 70,
        "strengths": ["History is kept in Git", "Feature work happens on branches"],
        "weaknesses": ["Commit messages are terse", "No pull request template"],
        "hidden_risks": ["Changes merge without review"],
        "real_world_impact": "Collaboration works for individuals but not yet for teams.",
        "failure_scenario": "Conflicting changes land and are hard to untangle.",
        "remediation_steps": ["Adopt conventional commit messages", "Add a pull request template"],
    },
    "security": {
        "score": 72,
        "strengths": ["Secrets are read from the environment"],
        "weaknesses": ["No input validation layer", "No dependency audit"],
        "hidden_risks": ["Credentials may leak through client bundles", "Vulnerable transitive dependencies"],
        "real_world_impact": "Basic measures exist but a security review is needed.",
        "failure_scenario": "An exposed key is abused and service access is lost.",
        "remediation_steps": ["Move credentials server side", "Audit dependencies regularly"],
        "vulnerabilities": [
            {
                "issue": "Credential exposure",
                "severity": 6,
                "explanation": "Keys configured for client builds can be extracted.",
                "mitigation": "Proxy model calls through a backend.",
            }
        ],
    },
    "performance": {
        "score": 75,
        "strengths": ["Build tooling applies standard optimizations"],
        "weaknesses": ["No performance monitoring", "No caching strategy"],
        "hidden_risks": ["Latency grows with data size"],
        "real_world_impact": "Performance is adequate today but unmeasured.",
        "failure_scenario": "Load growth causes slow responses nobody notices until users complain.",
        "remediation_steps": ["Add performance monitoring", "Introduce caching for hot paths"],
    },
    "dependencies": {
        "score": 68,
        "strengths": ["Dependencies are well-known packages"],
        "weaknesses": ["No automated update policy"],
        "hidden_risks": ["Outdated packages accumulate vulnerabilities"],
        "real_world_impact": "Dependencies are manageable but need upkeep.",
        "failure_scenario": "A forced upgrade breaks the build under time pressure.",
        "remediation_steps": ["Enable automated dependency updates", "Remove unused packages"],
    },
    "deployment": {
        "score": 80,
        "strengths": ["Deployments are automated from the main branch"],
        "weaknesses": ["No staging environment", "No rollback procedure"],
        "hidden_risks": ["Bad releases reach users directly"],
        "real_world_impact": "Delivery is fast but unguarded.",
        "failure_scenario": "A faulty release cannot be rolled back quickly.",
        "remediation_steps": ["Add a staging environment", "Document a rollback procedure"],
    },
    "business_alignment": {
        "score": 73,
        "strengths": ["Clear product purpose"],
        "weaknesses": ["No usage analytics"],
        "hidden_risks": ["Roadmap decisions lack data"],
        "real_world_impact": "The product has a good base but success is not measured.",
        "failure_scenario": "Investment goes into features users do not need.",
        "remediation_steps": ["Add usage analytics", "Tie the technical roadmap to product goals"],
    },
}


def fallback_records() -> dict[str, ModuleRecord]:
    records: dict[str, ModuleRecord] = {}
    for dimension, data in FALLBACK_FINDINGS.items():
        cls = SecurityRecord if dimension == "security" else ModuleRecord
        records[dimension] = cls.model_validate(data)
    return records


def build_fallback_report(
    repo_url: str,
    repo_meta: Optional[RepoSnapshot],
    dispatch_summary: Optional[DispatchSummary] = None,
) -> CompositeReport:
    return aggregate(
        fallback_records(),
        repo_meta,
        repo_url,
        source=ReportSource.fallback,
        dispatch_summary=dispatch_summary,
    )
