import asyncio
import json

import pytest

from sourceiq.models.config import DispatchConfig
from sourceiq.models.errors import ErrorKind, InsufficientResultsError, ModelInvocationError
from sourceiq.models.results import CORE_DIMENSIONS, OVERALL_DIMENSION, MaturityLevel
from sourceiq.models.tasks import PromptTemplate
from sourceiq.pipeline.dispatcher import Dispatcher
from sourceiq.utils.key_pool import KeyPool
from sourceiq.utils.ledger import CallLedger


def _config(**overrides):
    base = dict(
        overload_backoff_seconds=0,
        network_backoff_seconds=0,
        unknown_backoff_seconds=0,
        task_timeout_seconds=1,
        batch_timeout_seconds=5,
    )
    base.update(overrides)
    return DispatchConfig(**base)


def _templates(dimensions=CORE_DIMENSIONS):
    return [PromptTemplate(dimension=d, text=f"prompt:{d}") for d in dimensions]


class _FakeInvoker:
    """Answers by prompt; ``failing`` prompts always raise, ``bad_keys`` raise InvalidCredential."""

    def __init__(self, failing=(), bad_keys=(), kind=ErrorKind.unknown, slow=(), flaky=None):
        self.failing = set(failing)
        self.bad_keys = set(bad_keys)
        self.kind = kind
        self.slow = set(slow)
        self.flaky = dict(flaky or {})
        self.calls = []

    async def invoke(self, prompt, credential, timeout_seconds):
        dimension = prompt.split(":", 1)[1]
        self.calls.append((dimension, credential))
        if dimension in self.slow:
            await asyncio.sleep(30)
        if credential in self.bad_keys:
            raise ModelInvocationError(ErrorKind.invalid_credential, "API key not valid", status=400)
        if dimension in self.failing:
            raise ModelInvocationError(self.kind, "permanent failure")
        if self.flaky.get(dimension, 0) > 0:
            self.flaky[dimension] -= 1
            raise ModelInvocationError(ErrorKind.service_overloaded, "try later", status=503)
        if dimension == OVERALL_DIMENSION:
            return json.dumps({OVERALL_DIMENSION: {"maturity_level": "Intermediate"}})
        return json.dumps({dimension: {"score": 80, "strengths": [f"{dimension} ok"]}})


def test_primary_keys_rotate_across_prompts():
    pool = KeyPool(["k1", "k2", "k3"])
    invoker = _FakeInvoker()
    dispatcher = Dispatcher(pool, invoker, _config())

    tasks = dispatcher.build_tasks(_templates(CORE_DIMENSIONS[:5]))
    assert [t.primary_key_index for t in tasks] == [0, 1, 2, 0, 1]

    results = asyncio.run(dispatcher.run(_templates(CORE_DIMENSIONS[:5])))
    assert dict(invoker.calls) == {
        "structure": "k1",
        "code_quality": "k2",
        "documentation": "k3",
        "testing": "k1",
        "version_control": "k2",
    }
    assert results.success_count == 5


def test_permanent_failures_below_threshold_still_succeed():
    failing = ("documentation", "testing", "performance", "deployment")
    pool = KeyPool(["k1", "k2", "k3"])
    invoker = _FakeInvoker(failing=failing)
    ledger = CallLedger()

    results = asyncio.run(Dispatcher(pool, invoker, _config(), ledger).run(_templates()))

    assert results.success_count == 6
    assert sorted(results.failed) == sorted(failing)
    assert pool.stats()["failed"] == 0
    for outcome in results.outcomes:
        if outcome.dimension in failing:
            assert len(outcome.attempts) == 3
            assert outcome.error_kind == ErrorKind.unknown.value
    assert ledger.totals()["counts"]["model_attempt"] == 6 + 4 * 3


def test_too_many_failures_raise_insufficient_results():
    pool = KeyPool(["k1", "k2"])
    invoker = _FakeInvoker(failing=CORE_DIMENSIONS[:6])

    with pytest.raises(InsufficientResultsError) as excinfo:
        asyncio.run(Dispatcher(pool, invoker, _config()).run(_templates()))
    assert excinfo.value.success_count == 4
    assert excinfo.value.required == 5
    assert excinfo.value.total == 10


def test_invalid_credentials_are_marked_and_skipped():
    pool = KeyPool(["bad", "good1", "good2"])
    invoker = _FakeInvoker(bad_keys={"bad"})

    results = asyncio.run(Dispatcher(pool, invoker, _config()).run(_templates(CORE_DIMENSIONS[:6])))

    assert results.success_count == 6
    assert pool.is_failed(0)
    assert [credential for _, credential in invoker.calls].count("bad") == 1
    structure = next(o for o in results.outcomes if o.dimension == "structure")
    assert [a.key_index for a in structure.attempts] == [0, 1]
    assert structure.attempts[0].error_kind == ErrorKind.invalid_credential.value


def test_batch_deadline_abandons_slow_prompts():
    pool = KeyPool(["k1"])
    invoker = _FakeInvoker(slow={"business_alignment"})
    config = _config(batch_timeout_seconds=0.2, task_timeout_seconds=60)

    results = asyncio.run(Dispatcher(pool, invoker, config).run(_templates()))

    assert results.success_count == 9
    assert results.failed == ["business_alignment"]
    abandoned = next(o for o in results.outcomes if o.dimension == "business_alignment")
    assert abandoned.error == "abandoned at batch deadline"
    assert abandoned.error_kind == ErrorKind.timeout.value


def test_second_wave_retries_failed_prompts():
    pool = KeyPool(["k1"])
    invoker = _FakeInvoker(flaky={"testing": 3})

    results = asyncio.run(Dispatcher(pool, invoker, _config(retry_failed_wave=True)).run(_templates()))
    assert "testing" in results.succeeded
    assert results.success_count == 10

    pool = KeyPool(["k1"])
    invoker = _FakeInvoker(flaky={"testing": 3})
    results = asyncio.run(Dispatcher(pool, invoker, _config()).run(_templates()))
    assert results.failed == ["testing"]


def test_holistic_assessment_does_not_count_toward_threshold():
    pool = KeyPool(["k1", "k2"])
    invoker = _FakeInvoker(failing=CORE_DIMENSIONS[:6])
    templates = _templates() + [PromptTemplate(dimension=OVERALL_DIMENSION, text=f"prompt:{OVERALL_DIMENSION}")]

    with pytest.raises(InsufficientResultsError):
        asyncio.run(Dispatcher(pool, invoker, _config()).run(templates))

    results = asyncio.run(Dispatcher(KeyPool(["k1"]), _FakeInvoker(), _config()).run(templates))
    assert results.overall is not None
    assert results.overall.maturity_level == MaturityLevel.intermediate
    assert results.success_count == 10


def test_crashing_invoker_becomes_failed_outcome():
    class _Crashing:
        async def invoke(self, prompt, credential, timeout_seconds):
            raise RuntimeError("boom")

    with pytest.raises(InsufficientResultsError) as excinfo:
        asyncio.run(Dispatcher(KeyPool(["k1"]), _Crashing(), _config()).run(_templates()))
    assert excinfo.value.success_count == 0


def test_fully_marked_pool_recovers_inside_fallback_chain():
    pool = KeyPool(["k1", "k2"])
    pool.mark_failed(0)
    pool.mark_failed(1)
    invoker = _FakeInvoker()
    dispatcher = Dispatcher(pool, invoker, _config())
    task = dispatcher.build_tasks(_templates(["structure"]))[0]

    outcome = asyncio.run(dispatcher.deliver(task))

    assert outcome.success
    assert [a.key_index for a in outcome.attempts] == [0]
    assert pool.stats()["failed"] == 0


def test_non_finite_scores_do_not_abort_dispatch():
    class _Overflowing:
        async def invoke(self, prompt, credential, timeout_seconds):
            return '{"score": Infinity, "strengths": ["fast"]}'

    results = asyncio.run(Dispatcher(KeyPool(["k1"]), _Overflowing(), _config()).run(_templates()))
    assert results.success_count == 10
    assert results.records["structure"].score == 100
