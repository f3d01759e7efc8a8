"""Exception hierarchy shared by the pipeline, the queue and the retrieval layer."""

from __future__ import annotations


class DeckError(Exception):
    """Base class for all recoverable DeckWeaver errors."""


class StageTransitionError(DeckError):
    """An action was requested from a stage that does not allow it."""

    def __init__(self, action: str, stage: str):
        super().__init__(f"Cannot {action} while in stage '{stage}'")
        self.action = action
        self.stage = stage


class GenerationBusyError(DeckError):
    """Another generation unit currently owns the session."""

    def __init__(self, owner: str):
        super().__init__(f"Generation already in progress: {owner}")
        self.owner = owner


class QueueOrderError(DeckError):
    """The markup pass was started while some pages still lack content."""


class PageNotFoundError(DeckError):
    """A page index outside the confirmed outline was addressed."""

    def __init__(self, index: int):
        super().__init__(f"Page not found: {index}")
        self.index = index


class GenerationError(DeckError):
    """A generation unit (one stage or one page) failed; state was kept.

    The unit can be retried without touching any other state.
    """

    def __init__(self, unit: str, message: str):
        super().__init__(f"[{unit}] {message}")
        self.unit = unit


_HTTP_STATUS: dict[type[DeckError], int] = {
    StageTransitionError: 409,
    GenerationBusyError: 409,
    QueueOrderError: 409,
    PageNotFoundError: 404,
    GenerationError: 502,
}


def http_status(exc: DeckError) -> int:
    """HTTP status the API reports for ``exc``."""
    for cls, status in _HTTP_STATUS.items():
        if isinstance(exc, cls):
            return status
    return 400
