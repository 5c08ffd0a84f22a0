from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..models.results import OVERALL_DIMENSION, RepoSnapshot
from ..models.tasks import PromptTemplate

MODULE_SHAPE = (
    '{"score": 0-100, "medal": "Platinum|Gold|Silver|Bronze", "strengths": ["specific"], '
    '"weaknesses": ["actual"], "hidden_risks": ["real"], "real_world_impact": "description", '
    '"failure_scenario": "what breaks", "remediation_steps": ["actions"]}'
)
SECURITY_SHAPE = MODULE_SHAPE[:-1] + (
    ', "vulnerabilities": [{"issue": "name", "severity": 1-10, "explanation": "why", "mitigation": "fix"}]}'
)
OVERALL_SHAPE = (
    '{"maturity_level": "Beginner|Intermediate|Advanced", "technical_debt_score": 0-100, '
    '"scaling_readiness": 0-100, "critical_priorities": ["priority1", "priority2", "priority3"], '
    '"team_size_recommendation": 1-10, "estimated_improvement_timeline": "weeks|months"}'
)


@dataclass(frozen=True)
class Dimension:
    key: str
    title: str
    focus: tuple[str, ...]
    with_summary: bool = False


DIMENSIONS: tuple[Dimension, ...] = (
    Dimension(
        "structure",
        "STRUCTURAL INTEGRITY",
        (
            "Directory organization, source layout, config placement",
            "Architecture patterns, modular design, layer separation",
            "Import patterns, circular dependencies, coupling",
        ),
        with_summary=True,
    ),
    Dimension(
        "code_quality",
        "CODE QUALITY",
        (
            "Naming conventions, formatting, comment quality",
            "Code smells, duplication, function complexity",
            "SOLID principles, DRY violations, patterns",
        ),
    ),
    Dimension(
        "documentation",
        "DOCUMENTATION",
        (
            "README quality, setup instructions, examples",
            "Code comments, API docs, architecture guides",
            "Contributing guidelines, troubleshooting",
        ),
    ),
    Dimension(
        "testing",
        "TESTING",
        (
            "Test files, frameworks, coverage tools",
            "Unit, integration, end-to-end test types",
            "CI integration, automated testing",
        ),
        with_summary=True,
    ),
    Dimension(
        "version_control",
        "VERSION CONTROL",
        (
            "Commit history, message quality, patterns",
            "Branching strategy, pull request process",
            "Contributor activity, collaboration",
        ),
    ),
    Dimension(
        "security",
        "SECURITY",
        (
            "Authentication, session management",
            "Authorization, access controls",
            "Data protection, API security, known vulnerabilities",
        ),
    ),
    Dimension(
        "performance",
        "PERFORMANCE",
        (
            "Code efficiency, algorithm complexity",
            "Scalability patterns, caching strategies",
            "Bundle size, loading performance",
        ),
    ),
    Dimension(
        "dependencies",
        "DEPENDENCY",
        (
            "Package health, versions, security advisories",
            "Dependency tree, conflicts, peer dependencies",
            "Supply chain security, license compliance",
        ),
        with_summary=True,
    ),
    Dimension(
        "deployment",
        "DEPLOYMENT",
        (
            "CI/CD setup, automation, build process",
            "Infrastructure configs, environment management",
            "Monitoring, logging, alerting systems",
        ),
    ),
    Dimension(
        "business_alignment",
        "BUSINESS",
        (
            "Product-market fit, user needs alignment",
            "Growth potential, feature extensibility",
            "Cost efficiency, resource optimization",
        ),
    ),
)


def _date(value: str | None) -> str:
    if not value:
        return "unknown"
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return value


def size_label(size_kb: int) -> str:
    if size_kb > 10000:
        return "large"
    if size_kb > 1000:
        return "medium"
    return "small"


def build_repo_summary(snapshot: RepoSnapshot) -> str:
    repo = snapshot.repo
    license_info = repo.get("license") or {}
    lines = [
        f"REAL REPOSITORY DATA for {snapshot.full_name}:",
        f"- Description: {repo.get('description') or 'No description'}",
        f"- Primary Language: {repo.get('language') or 'Not specified'}",
        f"- Languages: {', '.join(snapshot.languages) or 'None detected'}",
        f"- Stars: {repo.get('stargazers_count', 0)}",
        f"- Forks: {repo.get('forks_count', 0)}",
        f"- Size: {round((repo.get('size') or 0) / 1024)}MB",
        f"- Created: {_date(repo.get('created_at'))}",
        f"- Last Updated: {_date(repo.get('updated_at'))}",
        f"- Open Issues: {repo.get('open_issues_count', 0)}",
        f"- Has Tests: {snapshot.has_tests}",
        f"- Has CI/CD: {snapshot.has_ci}",
        f"- Has Docker: {snapshot.has_dockerfile}",
        f"- Contributors: {len(snapshot.contributors)}",
        f"- Recent Commits: {len(snapshot.commits)}",
        f"- Branches: {len(snapshot.branches)}",
        f"- License: {license_info.get('name') or 'No license'}",
        f"- Topics: {', '.join(repo.get('topics') or []) or 'None'}",
        f"- README Available: {'Yes' if snapshot.readme else 'No'}",
        f"- Package.json Available: {'Yes' if snapshot.package_json else 'No'}",
    ]
    if snapshot.package_json:
        lines.append(f"- Dependencies: {len(snapshot.dependencies)}")
        lines.append(f"- Dev Dependencies: {len(snapshot.dev_dependencies)}")
    return "\n".join(lines)


def _extra_facts(key: str, snapshot: RepoSnapshot) -> list[str]:
    repo = snapshot.repo
    if key == "structure":
        size_kb = repo.get("size") or 0
        return [
            f"- Repository size ({round(size_kb / 1024)}MB) indicates a {size_label(size_kb)} codebase",
            f"- Primary language: {repo.get('language') or 'Not specified'}",
            f"- Multiple languages: {'Yes' if len(snapshot.languages) > 1 else 'No'}",
            f"- Root entries: {', '.join(str(f.get('name')) for f in snapshot.files[:25]) or 'unknown'}",
        ]
    if key == "testing":
        scripts = (snapshot.package_json or {}).get("scripts") or {}
        test_scripts = [s for s in scripts if "test" in s]
        frameworks = [
            dep
            for dep in {**snapshot.dependencies, **snapshot.dev_dependencies}
            if any(marker in dep for marker in ("test", "jest", "mocha", "cypress", "vitest", "pytest"))
        ]
        return [
            f"- Has Tests: {'YES' if snapshot.has_tests else 'NO'}",
            f"- Has CI/CD: {'YES' if snapshot.has_ci else 'NO'}",
            f"- Test scripts: {', '.join(test_scripts) or 'None'}",
            f"- Testing frameworks in dependencies: {', '.join(frameworks) or 'None detected'}",
        ]
    if key == "dependencies":
        engines = (snapshot.package_json or {}).get("engines") or {}
        return [
            f"- Has package.json: {'YES' if snapshot.package_json else 'NO'}",
            f"- Production dependencies: {len(snapshot.dependencies)}",
            f"- Dev dependencies: {len(snapshot.dev_dependencies)}",
            f"- Main dependencies: {', '.join(list(snapshot.dependencies)[:10]) or 'None'}",
            f"- Node.js version: {engines.get('node') or 'Not specified'}",
            f"- Package manager: {(snapshot.package_json or {}).get('packageManager') or 'Not specified'}",
        ]
    return []


def _dimension_prompt(dimension: Dimension, snapshot: RepoSnapshot, repo_url: str, summary: str) -> str:
    shape = SECURITY_SHAPE if dimension.key == "security" else MODULE_SHAPE
    target = snapshot.full_name if dimension.with_summary else repo_url
    parts = [f"{dimension.title} ANALYSIS for: {target}", ""]
    if dimension.with_summary:
        parts.extend([summary, ""])
    parts.append("Examine and assess:")
    parts.extend(f"- {item}" for item in dimension.focus)
    extra = _extra_facts(dimension.key, snapshot)
    if extra:
        parts.extend(["", "Based on the REAL data above, consider:"])
        parts.extend(extra)
    parts.extend(["", f'Return JSON only: {{"{dimension.key}": {shape}}}'])
    return "\n".join(parts)


def _overall_prompt(repo_url: str, summary: str) -> str:
    return "\n".join(
        [
            f"OVERALL ASSESSMENT for: {repo_url}",
            "",
            summary,
            "",
            "Provide a comprehensive overview:",
            "- Repository maturity, technical debt level",
            "- Team readiness, scaling potential",
            "- Critical improvement priorities",
            "",
            f'Return JSON only: {{"{OVERALL_DIMENSION}": {OVERALL_SHAPE}}}',
        ]
    )


def build_prompts(snapshot: RepoSnapshot, repo_url: str) -> list[PromptTemplate]:
    """Ten dimension prompts in fixed order followed by the holistic prompt."""
    summary = build_repo_summary(snapshot)
    templates = [
        PromptTemplate(dimension=d.key, text=_dimension_prompt(d, snapshot, repo_url, summary)) for d in DIMENSIONS
    ]
    templates.append(PromptTemplate(dimension=OVERALL_DIMENSION, text=_overall_prompt(repo_url, summary)))
    return templates
