import pytest

import wikibatch.retry as retry_module
from tests.mocks.sessions import FakeClock


@pytest.fixture(autouse=True)
def test_set_env(monkeypatch):
    monkeypatch.delenv("WIKIBATCH_USER_AGENT", raising=False)
    monkeypatch.delenv("WIKIBATCH_ACCESS_TOKEN", raising=False)


@pytest.fixture
def clock(monkeypatch) -> FakeClock:
    """
    Patch the retry clock so that retry delays pass instantly.

    Returns
    -------
    FakeClock
        The installed clock.
    """
    fake_clock = FakeClock()
    monkeypatch.setattr(retry_module, "monotonic", fake_clock.monotonic)
    monkeypatch.setattr(retry_module, "sleep", fake_clock.sleep)
    return fake_clock
