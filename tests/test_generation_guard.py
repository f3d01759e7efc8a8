import pytest

from deckweaver.services.errors import GenerationBusyError, http_status
from deckweaver.services.generation_guard import GenerationGuard


def test_second_acquire_fails_fast():
    guard = GenerationGuard("t")
    with guard.acquire("outline") as token:
        assert guard.busy
        assert guard.owner == "outline"
        assert token.active
        with pytest.raises(GenerationBusyError) as exc:
            guard.acquire("content_pass")
        assert exc.value.owner == "outline"
        assert http_status(exc.value) == 409
    assert not guard.busy
    assert not token.active


def test_release_on_exception():
    guard = GenerationGuard()
    with pytest.raises(RuntimeError):
        with guard.acquire("x"):
            raise RuntimeError("boom")
    assert not guard.busy
    with guard.acquire("y"):
        assert guard.owner == "y"


def test_stale_token_cannot_release_new_owner():
    guard = GenerationGuard()
    old = guard.acquire("a")
    old.release()
    new = guard.acquire("b")
    old.release()
    assert guard.owner == "b"
    new.release()
    assert not guard.busy
