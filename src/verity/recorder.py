"""Append fact-check actions to editions and advance their workflow state."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Protocol

from .types import RECEIVE_FACT_CHECK, Action, Edition, EditionState

LOGGER = logging.getLogger(__name__)


class EditionRepository(Protocol):
    """Persistence operations the ingester needs from the edition store."""

    def find_by_fact_check_address(self, address: str) -> Edition | None:
        ...

    def append_action(self, edition: Edition, action: Action) -> None:
        ...

    def set_state(self, edition: Edition, state: EditionState) -> None:
        ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def record(
    editions: EditionRepository,
    edition: Edition,
    body: str,
    *,
    clock: Callable[[], datetime] = utc_now,
) -> Action:
    """Record a received fact check against ``edition``.

    The state moves to ``fact_check_received`` whatever it was before, and
    every call appends a new action, so repeated replies stay in the history.
    """

    action = Action(request_type=RECEIVE_FACT_CHECK, comment=body, created_at=clock())
    editions.append_action(edition, action)
    previous = edition.state
    editions.set_state(edition, EditionState.FACT_CHECK_RECEIVED)
    LOGGER.debug(
        "Edition %s moved from %s to %s",
        edition.edition_id,
        _state_name(previous),
        EditionState.FACT_CHECK_RECEIVED.value,
    )
    return action


def _state_name(state: EditionState | str) -> str:
    return state.value if isinstance(state, EditionState) else str(state)


__all__ = ["EditionRepository", "record", "utc_now"]
