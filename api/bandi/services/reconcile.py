"""Diff a persisted child collection against a desired one.

``reconcile`` decides, per natural key, whether an item has to be created,
updated or removed; ``execute_actions`` dispatches those decisions against a
repository concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from bandi.services.repository import ReconciliationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ActionKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    REMOVE = "remove"


@dataclass(slots=True, frozen=True)
class Action(Generic[T]):
    kind: ActionKind
    item: T
    # The persisted item an UPDATE replaces; None for CREATE and REMOVE.
    current: T | None = None

    @classmethod
    def create(cls, item: T) -> Action[T]:
        return cls(kind=ActionKind.CREATE, item=item)

    @classmethod
    def update(cls, item: T, current: T) -> Action[T]:
        return cls(kind=ActionKind.UPDATE, item=item, current=current)

    @classmethod
    def remove(cls, item: T) -> Action[T]:
        return cls(kind=ActionKind.REMOVE, item=item)


def key_by(*attributes: str) -> Callable[[Any], Hashable]:
    """Key on the first attribute that is set on the item.

    ``key_by("code", "id")`` keys assignments by code and falls back to the
    surrogate id when the code is missing.
    """

    def key_of(item: Any) -> Hashable:
        for attribute in attributes:
            value = getattr(item, attribute, None)
            if value is not None:
                return value
        raise ValueError(f"item has none of the key attributes {attributes}: {item!r}")

    return key_of


def reconcile(
    persisted: Sequence[T],
    desired: Sequence[T],
    key_of: Callable[[T], Hashable],
) -> list[Action[T]]:
    stored: dict[Hashable, T] = {key_of(item): item for item in persisted}
    actions: dict[Hashable, Action[T]] = {key: Action.remove(item) for key, item in stored.items()}
    for item in desired:
        key = key_of(item)
        if key in stored:
            actions[key] = Action.update(item, stored[key])
        else:
            actions[key] = Action.create(item)
    return list(actions.values())


async def execute_actions(
    actions: Sequence[Action[T]],
    *,
    create: Callable[[T], Awaitable[Any]] | None = None,
    update: Callable[[T], Awaitable[Any]] | None = None,
    remove: Callable[[T], Awaitable[Any]] | None = None,
    label: str = "children",
) -> list[Any]:
    """Run every action concurrently and wait for all of them.

    When any action fails a ``ReconciliationError`` carrying every failure is
    raised once all actions have settled; actions that succeeded stay applied.
    """
    handlers = {
        ActionKind.CREATE: create,
        ActionKind.UPDATE: update,
        ActionKind.REMOVE: remove,
    }
    missing = {action.kind.value for action in actions if handlers[action.kind] is None}
    if missing:
        raise ValueError(f"no handler for {sorted(missing)} actions on {label}")
    results = await asyncio.gather(
        *(handlers[action.kind](action.item) for action in actions),
        return_exceptions=True,
    )
    errors = [result for result in results if isinstance(result, BaseException)]
    if errors:
        logger.warning(
            "reconciliation of %s failed: %s of %s actions raised",
            label,
            len(errors),
            len(actions),
        )
        raise ReconciliationError(f"failed to reconcile {label}", errors)
    return list(results)
