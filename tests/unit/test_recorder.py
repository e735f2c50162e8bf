from __future__ import annotations

from datetime import datetime, timezone

import pytest

from verity.recorder import record
from verity.types import RECEIVE_FACT_CHECK, Action, Edition, EditionState

FIXED = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class MemoryEditions:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def find_by_fact_check_address(self, address: str) -> Edition | None:  # pragma: no cover
        return None

    def append_action(self, edition: Edition, action: Action) -> None:
        self.calls.append(("append", edition.edition_id))
        edition.actions.append(action)

    def set_state(self, edition: Edition, state: EditionState) -> None:
        self.calls.append(("state", state.value))
        edition.state = state


def test_record_appends_action_and_sets_state():
    editions = MemoryEditions()
    edition = Edition("guide-1", "factcheck+1@example.com", state=EditionState.FACT_CHECK)

    action = record(editions, edition, "Looks right to me.", clock=lambda: FIXED)

    assert action == Action(RECEIVE_FACT_CHECK, "Looks right to me.", FIXED)
    assert edition.actions == [action]
    assert edition.state is EditionState.FACT_CHECK_RECEIVED
    assert editions.calls == [("append", "guide-1"), ("state", "fact_check_received")]


@pytest.mark.parametrize("state", [EditionState.IN_REVIEW, EditionState.PUBLISHED])
def test_record_overrides_any_previous_state(state):
    edition = Edition("guide-1", "factcheck+1@example.com", state=state)

    record(MemoryEditions(), edition, "ok", clock=lambda: FIXED)

    assert edition.state is EditionState.FACT_CHECK_RECEIVED


def test_repeated_replies_are_all_kept():
    editions = MemoryEditions()
    edition = Edition("guide-1", "factcheck+1@example.com")

    record(editions, edition, "first", clock=lambda: FIXED)
    record(editions, edition, "second", clock=lambda: FIXED)

    assert [action.comment for action in edition.actions] == ["first", "second"]
