from __future__ import annotations

from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import Any

import pytest

from bandi.schemas.assignments import Assignment, AssignmentFilter, AssignmentState
from bandi.schemas.notices import ApplicationSheet, Article, Comment, EvaluationCriterion
from bandi.services.notices import NoticeCoordinator
from bandi.services.repository import RepositoryConflictError, RepositoryNotFoundError


@dataclass
class FakeStore:
    """In-memory tables shared by the fake repositories.

    ``failures`` maps ``"<table>.<operation>"`` to the exception that call
    should raise; ``writes`` records every successful mutation in order.
    """

    notices: dict[str, dict[str, Any]] = field(default_factory=dict)
    articles: dict[Hashable, Article] = field(default_factory=dict)
    evaluation_criteria: dict[Hashable, EvaluationCriterion] = field(default_factory=dict)
    assignments: dict[int, Assignment] = field(default_factory=dict)
    application_sheets: dict[str, ApplicationSheet] = field(default_factory=dict)
    comments: dict[str, Comment] = field(default_factory=dict)
    failures: dict[str, Exception] = field(default_factory=dict)
    writes: list[str] = field(default_factory=list)

    def check(self, operation: str) -> None:
        error = self.failures.get(operation)
        if error is not None:
            raise error

    def record(self, operation: str) -> None:
        self.writes.append(operation)


class FakeNoticeRepository:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def create(self, fields: dict[str, Any]) -> dict[str, Any]:
        self.store.check("notice.create")
        if fields["protocol"] in self.store.notices:
            raise RepositoryConflictError("duplicate key")
        self.store.notices[fields["protocol"]] = dict(fields)
        self.store.record("notice.create")
        return dict(fields)

    async def update(self, protocol: str, fields: dict[str, Any]) -> int:
        self.store.check("notice.update")
        if protocol not in self.store.notices:
            return 0
        self.store.notices[protocol].update(fields)
        self.store.record("notice.update")
        return 1

    async def remove(self, protocol: str) -> bool:
        self.store.check("notice.remove")
        if self.store.notices.pop(protocol, None) is None:
            return False
        # Mirrors the cascading foreign keys of the real schema.
        for table in (self.store.articles, self.store.evaluation_criteria):
            for key in [key for key, item in table.items() if item.notice_protocol == protocol]:
                del table[key]
        for key in [key for key, item in self.store.assignments.items() if item.notice_protocol == protocol]:
            del self.store.assignments[key]
        self.store.application_sheets.pop(protocol, None)
        self.store.comments.pop(protocol, None)
        self.store.record("notice.remove")
        return True

    async def exists(self, protocol: str) -> bool:
        return protocol in self.store.notices

    async def find_by_protocol(self, protocol: str) -> dict[str, Any] | None:
        row = self.store.notices.get(protocol)
        return dict(row) if row is not None else None

    async def find_by_state(self, state: str) -> list[dict[str, Any]]:
        return [dict(row) for row in self.store.notices.values() if _value(row.get("state")) == _value(state)]

    async def find_by_referent(self, referent: str) -> list[dict[str, Any]]:
        return [dict(row) for row in self.store.notices.values() if row.get("referent_professor") == referent]

    async def find_all(self) -> list[dict[str, Any]]:
        return [dict(self.store.notices[protocol]) for protocol in sorted(self.store.notices)]


class FakeChildRepository:
    """Children keyed by ``(notice_protocol, <natural key>)``."""

    def __init__(self, store: FakeStore, table: str, key: Callable[[Any], Hashable]) -> None:
        self.store = store
        self.table = table
        self.key = key

    @property
    def rows(self) -> dict[Hashable, Any]:
        return getattr(self.store, self.table)

    async def create(self, item: Any) -> Any:
        self.store.check(f"{self.table}.create")
        key = (item.notice_protocol, self.key(item))
        if key in self.rows:
            raise RepositoryConflictError("duplicate key")
        self.rows[key] = item
        self.store.record(f"{self.table}.create")
        return item

    async def update(self, item: Any) -> Any:
        self.store.check(f"{self.table}.update")
        key = (item.notice_protocol, self.key(item))
        if key not in self.rows:
            raise RepositoryNotFoundError(f"the {self.table} row doesn't exists")
        self.rows[key] = item
        self.store.record(f"{self.table}.update")
        return item

    async def remove(self, item: Any) -> bool:
        self.store.check(f"{self.table}.remove")
        removed = self.rows.pop((item.notice_protocol, self.key(item)), None) is not None
        self.store.record(f"{self.table}.remove")
        return removed

    async def find_by_notice(self, notice_protocol: str) -> list[Any]:
        self.store.check(f"{self.table}.find")
        return [item for (protocol, _), item in self.rows.items() if protocol == notice_protocol]


class FakeAssignmentRepository:
    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self._next_id = 1

    async def create(self, assignment: Assignment) -> Assignment:
        self.store.check("assignments.create")
        if any(
            item.notice_protocol == assignment.notice_protocol and item.code == assignment.code
            for item in self.store.assignments.values()
        ):
            raise RepositoryConflictError("duplicate key")
        created = assignment.model_copy(update={"id": self._next_id})
        self.store.assignments[self._next_id] = created
        self._next_id += 1
        self.store.record("assignments.create")
        return created

    async def update(self, assignment: Assignment, *, expected_state: AssignmentState | None = None) -> Assignment:
        self.store.check("assignments.update")
        current = self.store.assignments.get(assignment.id)
        if current is None:
            raise RepositoryNotFoundError("assignment not found")
        if expected_state is not None and current.state is not expected_state:
            raise RepositoryConflictError(f"assignment is no longer {expected_state.value}")
        self.store.assignments[assignment.id] = assignment
        self.store.record("assignments.update")
        return assignment

    async def update_details(self, assignment: Assignment) -> Assignment:
        self.store.check("assignments.update_details")
        for assignment_id, current in self.store.assignments.items():
            if current.notice_protocol == assignment.notice_protocol and current.code == assignment.code:
                updated = current.model_copy(
                    update={
                        "title": assignment.title,
                        "total_number_hours": assignment.total_number_hours,
                        "hourly_cost": assignment.hourly_cost,
                        "ht_fund": assignment.ht_fund,
                        "activity_description": assignment.activity_description,
                    }
                )
                self.store.assignments[assignment_id] = updated
                self.store.record("assignments.update_details")
                return updated
        raise RepositoryNotFoundError("assignment not found")

    async def remove(self, assignment: Assignment) -> bool:
        self.store.check("assignments.remove")
        for assignment_id, current in list(self.store.assignments.items()):
            if current.notice_protocol == assignment.notice_protocol and current.code == assignment.code:
                del self.store.assignments[assignment_id]
                self.store.record("assignments.remove")
                return True
        return False

    async def find_by_id(self, assignment_id: int) -> Assignment | None:
        self.store.check("assignments.find")
        return self.store.assignments.get(assignment_id)

    async def find_by_notice(self, notice_protocol: str) -> list[Assignment]:
        return await self.search(AssignmentFilter(notice_protocol=notice_protocol))

    async def search(self, assignment_filter: AssignmentFilter) -> list[Assignment]:
        self.store.check("assignments.find")
        criteria = assignment_filter.model_dump(exclude_none=True)
        return [
            item
            for _, item in sorted(self.store.assignments.items())
            if all(_value(getattr(item, name)) == _value(value) for name, value in criteria.items())
        ]


class FakeSingletonRepository:
    """Application sheet and comment: at most one row per notice."""

    def __init__(self, store: FakeStore, table: str) -> None:
        self.store = store
        self.table = table

    @property
    def rows(self) -> dict[str, Any]:
        return getattr(self.store, self.table)

    async def create(self, item: Any) -> Any:
        self.store.check(f"{self.table}.create")
        if item.notice_protocol in self.rows:
            raise RepositoryConflictError("duplicate key")
        self.rows[item.notice_protocol] = item
        self.store.record(f"{self.table}.create")
        return item

    async def upsert(self, item: Any) -> Any:
        self.store.check(f"{self.table}.upsert")
        self.rows[item.notice_protocol] = item
        self.store.record(f"{self.table}.upsert")
        return item

    async def find_by_notice(self, notice_protocol: str) -> Any | None:
        self.store.check(f"{self.table}.find")
        return self.rows.get(notice_protocol)

    async def find_by_protocol(self, notice_protocol: str) -> Any | None:
        return await self.find_by_notice(notice_protocol)


class FakeNotifier:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))


def _value(value: Any) -> Any:
    return getattr(value, "value", value)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def assignment_repository(store: FakeStore) -> FakeAssignmentRepository:
    return FakeAssignmentRepository(store)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def coordinator(store: FakeStore, assignment_repository: FakeAssignmentRepository) -> NoticeCoordinator:
    return NoticeCoordinator(
        notices=FakeNoticeRepository(store),
        articles=FakeChildRepository(store, "articles", key=lambda item: item.initial),
        evaluation_criteria=FakeChildRepository(store, "evaluation_criteria", key=lambda item: item.name),
        assignments=assignment_repository,
        application_sheets=FakeSingletonRepository(store, "application_sheets"),
        comments=FakeSingletonRepository(store, "comments"),
    )
