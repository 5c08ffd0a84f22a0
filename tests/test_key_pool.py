from sourceiq.utils.key_pool import KeyPool
from sourceiq.utils.normalize import PLACEHOLDER_KEY, mask_credential, parse_credentials


class _Clock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_advance_skips_failed_keys():
    pool = KeyPool(["k1", "k2", "k3"])
    pool.mark_failed(1)
    assert pool.advance() == "k3"
    assert pool.advance() == "k1"
    assert pool.advance() == "k3"
    assert pool.stats() == {"total": 3, "failed": 1, "current_index": 2, "available": 2}


def test_advance_resets_when_every_key_failed():
    pool = KeyPool(["k1", "k2", "k3"])
    for i in range(3):
        pool.mark_failed(i)
    assert pool.advance() == "k1"
    assert pool.current_index == 0
    assert pool.stats()["failed"] == 0


def test_reset_window_clears_marks():
    clock = _Clock()
    pool = KeyPool(["k1", "k2"], reset_window_seconds=3600, clock=clock)
    pool.mark_failed(1)
    assert pool.healthy_from(1) == 0

    clock.now = 3601
    assert pool.refresh() is True
    assert not pool.is_failed(1)
    assert pool.healthy_from(1) == 1


def test_refresh_keeps_marks_inside_window():
    clock = _Clock()
    pool = KeyPool(["k1", "k2"], clock=clock)
    pool.mark_failed(0)
    clock.now = 10
    assert pool.refresh() is False
    assert pool.is_failed(0)
    assert pool.failed_at(0) == 0


def test_healthy_from_returns_none_when_all_failed():
    pool = KeyPool(["k1", "k2"])
    pool.mark_failed(0)
    assert pool.healthy_from(0, include_start=False) == 1
    pool.mark_failed(1)
    assert pool.healthy_from(0) is None


def test_single_key_can_be_retried():
    pool = KeyPool(["only"])
    assert pool.healthy_from(0, include_start=False) == 0


def test_mark_current_failed_uses_cursor():
    pool = KeyPool(["k1", "k2", "k3"])
    pool.advance()
    pool.mark_current_failed()
    assert pool.is_failed(1)
    assert pool.current_key() == "k2"


def test_empty_pool_uses_placeholder():
    pool = KeyPool([])
    assert pool.size == 1
    assert pool.current_key() == PLACEHOLDER_KEY


def test_parse_credentials_filters_and_dedupes():
    good = "A" * 39
    other = "B" * 39
    raw = f" {good}, ,short,{other},{good},your-api-key-goes-here-xxxxx"
    assert parse_credentials(raw) == [good, other]
    assert parse_credentials(None) == []


def test_mask_credential_hides_middle():
    assert mask_credential("AIzaSyExampleKey1234") == "AIza...1234"
    assert mask_credential("short") == "***"
