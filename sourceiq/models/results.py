from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

CORE_DIMENSIONS = (
    "structure",
    "code_quality",
    "documentation",
    "testing",
    "version_control",
    "security",
    "performance",
    "dependencies",
    "deployment",
    "business_alignment",
)

OVERALL_DIMENSION = "overall_assessment"


class Medal(str, Enum):
    bronze = "Bronze"
    silver = "Silver"
    gold = "Gold"
    platinum = "Platinum"


class MaturityLevel(str, Enum):
    beginner = "Beginner"
    intermediate = "Intermediate"
    advanced = "Advanced"


class ReportSource(str, Enum):
    dynamic = "dynamic"
    fallback = "fallback"


def medal_for_score(score: int) -> Medal:
    if score >= 90:
        return Medal.platinum
    if score >= 75:
        return Medal.gold
    if score >= 50:
        return Medal.silver
    return Medal.bronze


def maturity_for_score(score: int) -> MaturityLevel:
    if score >= 80:
        return MaturityLevel.advanced
    if score >= 60:
        return MaturityLevel.intermediate
    return MaturityLevel.beginner


def _coerce_int(value: Any, default: int, low: int, high: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return max(low, min(high, value))
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if math.isnan(number):
        return default
    if math.isinf(number):
        return high if number > 0 else low
    return max(low, min(high, round(number)))


def _coerce_str_list(value: Any) -> Any:
    if value is None:
        return value
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [item if isinstance(item, str) else str(item) for item in value if item is not None]
    return [str(value)]


class SecurityIssue(BaseModel):
    issue: str = "Unspecified issue"
    severity: int = 5
    explanation: str = "No explanation provided."
    mitigation: str = "No mitigation provided."

    @field_validator("severity", mode="before")
    @classmethod
    def _clamp_severity(cls, value: Any) -> int:
        return _coerce_int(value, 5, 1, 10)

    @field_validator("issue", "explanation", "mitigation", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Any:
        if value is None:
            return "Not provided."
        return value if isinstance(value, str) else str(value)


class ModuleRecord(BaseModel):
    score: int = 50
    medal: Medal = Medal.bronze
    strengths: list[str] = Field(default_factory=lambda: ["No strengths reported"])
    weaknesses: list[str] = Field(default_factory=lambda: ["No weaknesses reported"])
    hidden_risks: list[str] = Field(default_factory=lambda: ["No hidden risks reported"])
    real_world_impact: str = "Impact not described."
    failure_scenario: str = "Failure scenario not described."
    remediation_steps: list[str] = Field(default_factory=lambda: ["No remediation steps reported"])

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> int:
        return _coerce_int(value, 50, 0, 100)

    @field_validator("medal", mode="before")
    @classmethod
    def _lenient_medal(cls, value: Any) -> Medal:
        if isinstance(value, Medal):
            return value
        try:
            return Medal(str(value).strip().title())
        except ValueError:
            return Medal.bronze

    @field_validator("strengths", "weaknesses", "hidden_risks", "remediation_steps", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> Any:
        return _coerce_str_list(value)

    @field_validator("real_world_impact", "failure_scenario", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Any:
        if isinstance(value, list):
            return " ".join(str(v) for v in value)
        return value if isinstance(value, str) else str(value)

    @model_validator(mode="after")
    def _medal_follows_score(self) -> "ModuleRecord":
        self.medal = medal_for_score(self.score)
        return self


class SecurityRecord(ModuleRecord):
    vulnerabilities: list[SecurityIssue] = Field(default_factory=list)

    @field_validator("vulnerabilities", mode="before")
    @classmethod
    def _vulns(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, dict):
            return [value]
        if isinstance(value, list):
            return [v if isinstance(v, (dict, SecurityIssue)) else {"issue": str(v)} for v in value]
        return []


class OverallAssessment(BaseModel):
    maturity_level: MaturityLevel = MaturityLevel.beginner
    technical_debt_score: int = 50
    scaling_readiness: int = 50
    critical_priorities: list[str] = Field(default_factory=list)
    team_size_recommendation: int = 2
    estimated_improvement_timeline: str = "months"

    @field_validator("maturity_level", mode="before")
    @classmethod
    def _lenient_maturity(cls, value: Any) -> MaturityLevel:
        if isinstance(value, MaturityLevel):
            return value
        try:
            return MaturityLevel(str(value).strip().title())
        except ValueError:
            return MaturityLevel.beginner

    @field_validator("technical_debt_score", "scaling_readiness", mode="before")
    @classmethod
    def _percent(cls, value: Any) -> int:
        return _coerce_int(value, 50, 0, 100)

    @field_validator("team_size_recommendation", mode="before")
    @classmethod
    def _team(cls, value: Any) -> int:
        return _coerce_int(value, 2, 1, 10)

    @field_validator("critical_priorities", mode="before")
    @classmethod
    def _priorities(cls, value: Any) -> Any:
        return _coerce_str_list(value) or []

    @field_validator("estimated_improvement_timeline", mode="before")
    @classmethod
    def _timeline(cls, value: Any) -> Any:
        return "months" if value is None else str(value)


class DimensionMap(BaseModel):
    structure: ModuleRecord
    code_quality: ModuleRecord
    documentation: ModuleRecord
    testing: ModuleRecord
    version_control: ModuleRecord
    security: SecurityRecord
    performance: ModuleRecord
    dependencies: ModuleRecord
    deployment: ModuleRecord
    business_alignment: ModuleRecord

    def get(self, dimension: str) -> ModuleRecord:
        return getattr(self, dimension)

    def scores(self) -> dict[str, int]:
        return {d: self.get(d).score for d in CORE_DIMENSIONS}


class ModuleMap(BaseModel):
    structure: ModuleRecord
    code_quality: ModuleRecord
    documentation: ModuleRecord
    testing: ModuleRecord
    version_control: ModuleRecord
    security: SecurityRecord
    operational: ModuleRecord
    professionalism: ModuleRecord
    business: ModuleRecord
    scalability: ModuleRecord


class RepoMetadata(BaseModel):
    name: str
    language_stack: list[str] = Field(default_factory=lambda: ["Unknown"])
    age_months: int = 12
    stars: int = 0
    forks: int = 0


class CriticalFlags(BaseModel):
    has_tests: bool = False
    has_readme: bool = False
    has_license: bool = False
    secrets_detected: bool = False
    unused_dependencies: int = 0


class TeamRole(BaseModel):
    role: str
    count: int
    justification: str


class HomePage(BaseModel):
    overview: str
    executive_summary: str
    overall_score: int
    maturity_level: MaturityLevel
    risk_snapshot: list[str] = Field(default_factory=list)
    team_recommendation: list[TeamRole] = Field(default_factory=list)


class ImprovementItem(BaseModel):
    dimension: str
    action: str
    reason: str


class DispatchSummary(BaseModel):
    succeeded: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    total_attempts: int = 0


class CompositeReport(BaseModel):
    repo_url: str
    source: ReportSource = ReportSource.dynamic
    generated_at: datetime
    repo_metadata: RepoMetadata
    critical_flags: CriticalFlags
    home_page: HomePage
    dimensions: DimensionMap
    modules: ModuleMap
    overall_assessment: OverallAssessment = Field(default_factory=OverallAssessment)
    improvement_roadmap: list[ImprovementItem] = Field(default_factory=list)
    dispatch_summary: DispatchSummary = Field(default_factory=DispatchSummary)


class ChatMessage(BaseModel):
    role: str
    text: str

    @field_validator("role")
    @classmethod
    def _role(cls, value: str) -> str:
        if value not in ("user", "model"):
            raise ValueError("role must be 'user' or 'model'")
        return value


class RepoSnapshot(BaseModel):
    repo: dict = Field(default_factory=dict)
    languages: dict[str, int] = Field(default_factory=dict)
    files: list[dict] = Field(default_factory=list)
    commits: list[dict] = Field(default_factory=list)
    contributors: list[dict] = Field(default_factory=list)
    branches: list[dict] = Field(default_factory=list)
    readme: Optional[str] = None
    package_json: Optional[dict] = None
    has_tests: bool = False
    has_ci: bool = False
    has_dockerfile: bool = False

    @property
    def full_name(self) -> str:
        return str(self.repo.get("full_name") or self.repo.get("name") or "unknown/unknown")

    @property
    def dependencies(self) -> dict:
        return (self.package_json or {}).get("dependencies") or {}

    @property
    def dev_dependencies(self) -> dict:
        return (self.package_json or {}).get("devDependencies") or {}
