from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class DispatchConfig(BaseModel):
    min_successes: int = 5
    min_fallback_attempts: int = 3
    max_fallback_attempts: int = 5
    task_timeout_seconds: float = 45.0
    batch_timeout_seconds: float = 120.0
    large_pool_batch_timeout_seconds: float = 90.0
    large_pool_threshold: int = 10
    overload_backoff_seconds: float = 3.0
    network_backoff_seconds: float = 2.0
    unknown_backoff_seconds: float = 1.0
    retry_failed_wave: bool = False

    def attempts_for(self, pool_size: int) -> int:
        return min(self.max_fallback_attempts, max(self.min_fallback_attempts, pool_size // 2))

    def batch_timeout_for(self, pool_size: int) -> float:
        if pool_size >= self.large_pool_threshold:
            return self.large_pool_batch_timeout_seconds
        return self.batch_timeout_seconds


class AnalysisConfig(BaseModel):
    credentials: list[str] = Field(default_factory=list)
    github_token: Optional[str] = None
    model: str = "gemini-2.5-flash"
    temperature: float = 0.4
    max_output_tokens: int = 8192
    request_timeout_seconds: float = 60.0
    github_requests_per_minute: int = 60
    http_retries: int = 2
    chat_timeout_seconds: float = 45.0
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)


class RunConfig(BaseModel):
    repo_url: str
    out_dir: Optional[str] = None
    run_id: str
    timestamp: datetime
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)

    @property
    def run_path(self) -> Optional[str]:
        if not self.out_dir:
            return None
        return f"{self.out_dir}/{self.timestamp.strftime('%Y%m%d_%H%M%S')}"
