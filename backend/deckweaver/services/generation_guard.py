"""Single-owner generation token for one session.

Every generation unit (outline stage, a queue pass, a page modification,
a chat turn) acquires the guard in a ``with`` block and threads the token
through its stream consumer. Acquisition while another unit holds it fails
immediately with `GenerationBusyError`. After release the token goes
inactive; consumers check ``token.active`` and ignore any late chunk.
"""

from __future__ import annotations

import logging
import uuid

from deckweaver.services.errors import GenerationBusyError

logger = logging.getLogger(__name__)


class GenerationToken:
    """Ownership handle returned by `GenerationGuard.acquire`."""

    def __init__(self, guard: GenerationGuard, owner: str):
        self.id = uuid.uuid4().hex[:8]
        self.owner = owner
        self._guard = guard
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def release(self) -> None:
        if not self._active:
            return
        self._active = False
        self._guard._release(self)

    def __enter__(self) -> GenerationToken:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"<GenerationToken {self.owner} {self.id} active={self._active}>"


class GenerationGuard:
    def __init__(self, name: str = "session"):
        self.name = name
        self._holder: GenerationToken | None = None

    @property
    def busy(self) -> bool:
        return self._holder is not None

    @property
    def owner(self) -> str | None:
        return self._holder.owner if self._holder else None

    def acquire(self, owner: str) -> GenerationToken:
        """Take ownership for ``owner``. Use as ``with guard.acquire("x") as token:``."""
        if self._holder is not None:
            raise GenerationBusyError(self._holder.owner)
        token = GenerationToken(self, owner)
        self._holder = token
        logger.debug("[%s] guard acquired by %s (%s)", self.name, owner, token.id)
        return token

    def _release(self, token: GenerationToken) -> None:
        if self._holder is token:
            self._holder = None
            logger.debug("[%s] guard released by %s (%s)", self.name, token.owner, token.id)
