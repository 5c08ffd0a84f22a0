from __future__ import annotations

import json
import logging
from typing import Sequence

from ..models.errors import ModelInvocationError
from ..models.results import ChatMessage, CompositeReport
from ..pipeline.dispatcher import Invoker
from ..utils.key_pool import KeyPool

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 10
MAX_CHAT_ATTEMPTS = 2


def report_context(report: CompositeReport) -> dict:
    return {
        "repository": report.repo_metadata.model_dump(),
        "overall_score": report.home_page.overall_score,
        "maturity_level": report.home_page.maturity_level.value,
        "executive_summary": report.home_page.executive_summary,
        "risk_snapshot": report.home_page.risk_snapshot,
        "critical_flags": report.critical_flags.model_dump(),
        "scores": report.dimensions.scores(),
        "improvement_roadmap": [item.action for item in report.improvement_roadmap],
    }


def build_chat_prompt(history: Sequence[ChatMessage], new_message: str, report: CompositeReport) -> str:
    recent = list(history)[-HISTORY_WINDOW:]
    conversation = "\n".join(f"{msg.role}: {msg.text}" for msg in recent)
    return (
        "You are a senior software architect answering questions about a repository you have analyzed.\n"
        "Answer concisely and ground every claim in the analysis below.\n\n"
        f"Analysis:\n{json.dumps(report_context(report), indent=2)}\n\n"
        f"Conversation so far:\n{conversation or '(none)'}\n\n"
        f"user: {new_message}\nmodel:"
    )


def fallback_answer(report: CompositeReport) -> str:
    home = report.home_page
    risk = home.risk_snapshot[0] if home.risk_snapshot else "no major risks recorded"
    action = report.improvement_roadmap[0].action if report.improvement_roadmap else "review the full report"
    return (
        f"I could not reach the analysis model right now. From the existing report, "
        f"{report.repo_metadata.name} scored {home.overall_score}/100 with "
        f"{home.maturity_level.value.lower()} maturity. The top risk is: {risk}. "
        f"A good first step is: {action}."
    )


async def chat_with_repo(
    history: Sequence[ChatMessage],
    new_message: str,
    report: CompositeReport,
    pool: KeyPool,
    invoker: Invoker,
    timeout_seconds: float = 45.0,
) -> str:
    """Answer a follow-up question about an analyzed repository.

    Never raises on model failure; the caller always receives some answer.
    """
    prompt = build_chat_prompt(history, new_message, report)
    for attempt in range(MAX_CHAT_ATTEMPTS):
        key_index = pool.current_index
        try:
            text = await invoker.invoke(prompt, pool.current_key(), timeout_seconds)
        except ModelInvocationError as exc:
            logger.warning(
                "chat attempt failed",
                extra={"attempt": attempt + 1, "key_index": key_index, "kind": exc.kind.value},
            )
            if exc.kind.is_credential_failure:
                pool.mark_current_failed()
            pool.advance()
            continue
        if text.strip():
            return text.strip()
        pool.advance()

    logger.warning("chat falling back to canned answer")
    return fallback_answer(report)
