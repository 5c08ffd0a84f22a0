from __future__ import annotations

from dataclasses import dataclass

from ..models.config import AnalysisConfig
from ..utils.gemini import GeminiInvoker
from ..utils.github import GitHubClient
from ..utils.http import HttpClient
from ..utils.key_pool import KeyPool
from ..utils.ledger import CallLedger


@dataclass
class RunContext:
    config: AnalysisConfig
    pool: KeyPool
    ledger: CallLedger
    github_http: HttpClient
    model_http: HttpClient
    github: GitHubClient
    invoker: GeminiInvoker

    async def close(self) -> None:
        await self.github_http.close()
        await self.model_http.close()
