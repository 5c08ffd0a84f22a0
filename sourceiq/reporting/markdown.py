from __future__ import annotations

from datetime import datetime, timezone

from ..models.results import CORE_DIMENSIONS


def build_summary(report: dict) -> str:
    home = report.get("home_page", {})
    meta = report.get("repo_metadata", {})
    flags = report.get("critical_flags", {})
    dimensions = report.get("dimensions", {})
    roadmap = report.get("improvement_roadmap", [])

    lines = [f"# SourceIQ Report: {meta.get('name', 'unknown')}", "", f"Generated: {datetime.now(timezone.utc).isoformat()}", ""]
    lines.append(f"- Repository: {report.get('repo_url', 'n/a')}")
    lines.append(f"- Source: {report.get('source', 'n/a')}")
    lines.append(f"- Overall score: {home.get('overall_score', 'n/a')}/100")
    lines.append(f"- Maturity: {home.get('maturity_level', 'n/a')}")
    lines.append("")
    lines.append(home.get("executive_summary", ""))
    lines.append("")

    lines.append("## Dimension Scores")
    for dimension in CORE_DIMENSIONS:
        record = dimensions.get(dimension) or {}
        lines.append(f"- {dimension}: {record.get('score', 'n/a')} ({record.get('medal', 'n/a')})")
    lines.append("")

    lines.append("## Critical Flags")
    for name, value in flags.items():
        lines.append(f"- {name}: {value}")
    lines.append("")

    lines.append("## Risk Snapshot")
    risks = home.get("risk_snapshot", [])
    if not risks:
        lines.append("- No risks recorded.")
    for risk in risks:
        lines.append(f"- {risk}")
    lines.append("")

    lines.append("## Improvement Roadmap")
    if not roadmap:
        lines.append("- No roadmap items.")
    for i, item in enumerate(roadmap, start=1):
        lines.append(f"{i}. {item.get('action')} ({item.get('dimension')}: {item.get('reason')})")

    return "\n".join(lines)
