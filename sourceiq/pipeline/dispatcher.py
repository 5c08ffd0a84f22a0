from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence

from ..models.config import DispatchConfig
from ..models.errors import ErrorKind, InsufficientResultsError, ModelInvocationError
from ..models.results import CORE_DIMENSIONS, OVERALL_DIMENSION, ModuleRecord, OverallAssessment
from ..models.tasks import PromptTask, PromptTemplate, TaskAttempt, TaskOutcome
from ..modules.parser import parse_overall, parse_response
from ..utils.key_pool import KeyPool
from ..utils.ledger import CallLedger

logger = logging.getLogger(__name__)


class Invoker(Protocol):
    async def invoke(self, prompt: str, credential: str, timeout_seconds: float) -> str: ...


@dataclass
class PartialResults:
    required: int
    records: dict[str, ModuleRecord] = field(default_factory=dict)
    overall: Optional[OverallAssessment] = None
    outcomes: list[TaskOutcome] = field(default_factory=list)
    parse_failures: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> list[str]:
        return [d for d in CORE_DIMENSIONS if d in self.records]

    @property
    def failed(self) -> list[str]:
        return [d for d in CORE_DIMENSIONS if d not in self.records]

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def total_attempts(self) -> int:
        return sum(len(o.attempts) for o in self.outcomes)

    def has(self, dimension: str) -> bool:
        if dimension == OVERALL_DIMENSION:
            return self.overall is not None
        return dimension in self.records


class Dispatcher:
    """Fans prompt templates out across the key pool and gathers partial results."""

    def __init__(
        self,
        pool: KeyPool,
        invoker: Invoker,
        config: DispatchConfig | None = None,
        ledger: CallLedger | None = None,
    ) -> None:
        self.pool = pool
        self.invoker = invoker
        self.config = config or DispatchConfig()
        self.ledger = ledger

    def build_tasks(self, templates: Sequence[PromptTemplate]) -> list[PromptTask]:
        return [PromptTask.build(i, template, self.pool.size) for i, template in enumerate(templates)]

    def _backoff(self, kind: ErrorKind) -> float:
        if kind == ErrorKind.service_overloaded:
            return self.config.overload_backoff_seconds
        if kind in (ErrorKind.network_error, ErrorKind.timeout):
            return self.config.network_backoff_seconds
        return self.config.unknown_backoff_seconds

    def _next_key(self, start: int, include_start: bool = True) -> Optional[int]:
        index = self.pool.healthy_from(start, include_start)
        if index is None and self.pool.refresh():
            index = self.pool.healthy_from(start, include_start)
        return index

    async def deliver(self, task: PromptTask) -> TaskOutcome:
        """Run one task through its fallback chain of credentials."""
        max_attempts = self.config.attempts_for(self.pool.size)
        attempts: list[TaskAttempt] = []
        last_error: str | None = None
        last_kind: ErrorKind | None = None

        key_index = self._next_key(task.primary_key_index)
        for attempt in range(max_attempts):
            if key_index is None:
                last_error = last_error or "no healthy credentials available"
                break

            start = time.monotonic()
            try:
                text = await self.invoker.invoke(
                    task.prompt_text, self.pool.key_at(key_index), self.config.task_timeout_seconds
                )
            except ModelInvocationError as exc:
                elapsed_ms = int((time.monotonic() - start) * 1000)
                last_error, last_kind = str(exc), exc.kind
                attempts.append(
                    TaskAttempt(key_index=key_index, error_kind=exc.kind.value, error=str(exc), elapsed_ms=elapsed_ms)
                )
                self._record(task, key_index, elapsed_ms, exc)
                logger.warning(
                    "prompt attempt failed",
                    extra={
                        "dimension": task.dimension,
                        "attempt": attempt + 1,
                        "key_index": key_index,
                        "kind": exc.kind.value,
                    },
                )
                if exc.kind.is_credential_failure:
                    self.pool.mark_failed(key_index)
                elif attempt < max_attempts - 1:
                    await asyncio.sleep(self._backoff(exc.kind))
                key_index = self._next_key(key_index, include_start=False)
                continue

            elapsed_ms = int((time.monotonic() - start) * 1000)
            attempts.append(TaskAttempt(key_index=key_index, elapsed_ms=elapsed_ms))
            self._record(task, key_index, elapsed_ms)
            logger.info("prompt completed", extra={"dimension": task.dimension, "key_index": key_index})
            return TaskOutcome(
                index=task.index, dimension=task.dimension, success=True, raw_text=text, attempts=attempts
            )

        logger.error("all fallback keys failed for prompt", extra={"dimension": task.dimension, "error": last_error})
        return TaskOutcome(
            index=task.index,
            dimension=task.dimension,
            success=False,
            error=last_error,
            error_kind=last_kind.value if last_kind else None,
            attempts=attempts,
        )

    def _record(self, task: PromptTask, key_index: int, elapsed_ms: int, exc: ModelInvocationError | None = None) -> None:
        if not self.ledger:
            return
        self.ledger.add(
            type="model_attempt",
            dimension=task.dimension,
            key_index=key_index,
            duration_ms=elapsed_ms,
            error=str(exc) if exc else None,
            error_kind=exc.kind.value if exc else None,
        )

    async def _run_task(self, task: PromptTask) -> TaskOutcome:
        try:
            return await self.deliver(task)
        except Exception as exc:
            logger.exception("prompt task crashed", extra={"dimension": task.dimension})
            return TaskOutcome(
                index=task.index,
                dimension=task.dimension,
                success=False,
                error=str(exc),
                error_kind=ErrorKind.unknown.value,
            )

    async def _wave(self, tasks: Sequence[PromptTask], deadline: float) -> list[TaskOutcome]:
        if not tasks:
            return []
        loop = asyncio.get_running_loop()
        running = {asyncio.create_task(self._run_task(t)): t for t in tasks}
        done, pending = await asyncio.wait(running, timeout=max(0.0, deadline - loop.time()))

        outcomes = [fut.result() for fut in done]
        if pending:
            logger.warning("batch deadline reached; abandoning in-flight prompts", extra={"abandoned": len(pending)})
            for fut in pending:
                fut.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for fut in pending:
                task = running[fut]
                outcomes.append(
                    TaskOutcome(
                        index=task.index,
                        dimension=task.dimension,
                        success=False,
                        error="abandoned at batch deadline",
                        error_kind=ErrorKind.timeout.value,
                    )
                )
        return sorted(outcomes, key=lambda o: o.index)

    def _absorb(self, outcomes: list[TaskOutcome], results: PartialResults) -> None:
        for outcome in outcomes:
            results.outcomes.append(outcome)
            if not outcome.success:
                continue
            if outcome.dimension == OVERALL_DIMENSION:
                results.overall = parse_overall(outcome.raw_text or "")
                if results.overall is None:
                    logger.warning("holistic assessment could not be parsed")
                continue
            parsed = parse_response(outcome.raw_text or "", outcome.dimension)
            if parsed.usable:
                results.records[outcome.dimension] = parsed.record
            else:
                results.parse_failures.append(outcome.dimension)

    async def run(self, templates: Sequence[PromptTemplate]) -> PartialResults:
        self.pool.refresh()
        tasks = self.build_tasks(templates)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.batch_timeout_for(self.pool.size)
        logger.info(
            "dispatching prompts",
            extra={"prompts": len(tasks), "keys": self.pool.size, "max_attempts": self.config.attempts_for(self.pool.size)},
        )

        results = PartialResults(required=self.config.min_successes)
        self._absorb(await self._wave(tasks, deadline), results)

        if self.config.retry_failed_wave:
            retry = [t for t in tasks if not results.has(t.dimension)]
            if retry and loop.time() < deadline:
                logger.info("retrying failed prompts in a second wave", extra={"prompts": len(retry)})
                self._absorb(await self._wave(retry, deadline), results)

        total = len([t for t in tasks if t.dimension in CORE_DIMENSIONS])
        logger.info(
            "dispatch finished",
            extra={"succeeded": results.success_count, "total": total, "attempts": results.total_attempts},
        )
        if results.success_count < self.config.min_successes:
            raise InsufficientResultsError(results.success_count, self.config.min_successes, total)
        return results
