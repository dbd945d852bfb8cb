"""State transitions of a single assignment.

Every transition loads the assignment, checks its current state and writes the
new row with a single conditional update guarded on that state. A
notification is scheduled afterwards and never awaited.
"""

from __future__ import annotations

from functools import lru_cache
import logging
from typing import Any

from bandi.schemas.assignments import Assignment, AssignmentFilter, AssignmentState
from bandi.services.notifier import Notifier, get_notifier
from bandi.services.repository import RepositoryConflictError, RepositoryNotFoundError, RepositoryValidationError
from bandi.services.tables import AssignmentRepository, get_assignment_repository

logger = logging.getLogger(__name__)


class InvalidTransitionError(RepositoryConflictError):
    """Raised when an assignment is not in the state a transition requires."""

    def __init__(self, assignment_id: int, action: str, current: AssignmentState, required: AssignmentState) -> None:
        super().__init__(
            f"cannot {action} assignment {assignment_id}: state is {current.value}, expected {required.value}"
        )
        self.assignment_id = assignment_id
        self.action = action
        self.current = current
        self.required = required


class AssignmentLifecycle:
    def __init__(self, assignments: AssignmentRepository, notifier: Notifier) -> None:
        self.assignments = assignments
        self.notifier = notifier

    async def send_request(self, assignment_id: int, student: str) -> Assignment:
        """Offer an unassigned assignment to ``student``."""
        if not student:
            raise RepositoryValidationError("student email is required")
        return await self._transition(
            assignment_id,
            "send_request",
            required=AssignmentState.UNASSIGNED,
            target=AssignmentState.WAITING,
            changes={"student": student},
        )

    async def book(self, assignment_id: int) -> Assignment:
        return await self._transition(
            assignment_id, "book", required=AssignmentState.WAITING, target=AssignmentState.BOOKED
        )

    async def assign(self, assignment_id: int) -> Assignment:
        return await self._transition(
            assignment_id, "assign", required=AssignmentState.BOOKED, target=AssignmentState.ASSIGNED
        )

    async def decline(self, assignment_id: int) -> Assignment:
        return await self._transition(
            assignment_id,
            "decline",
            required=AssignmentState.WAITING,
            target=AssignmentState.UNASSIGNED,
            changes={"student": None},
        )

    async def close(self, assignment_id: int, note: str) -> Assignment:
        if not note:
            raise RepositoryValidationError("a closing note is required")
        return await self._transition(
            assignment_id,
            "close",
            required=AssignmentState.ASSIGNED,
            target=AssignmentState.OVER,
            changes={"note": note},
        )

    async def search(self, assignment_filter: AssignmentFilter) -> list[Assignment]:
        return await self.assignments.search(assignment_filter)

    async def find(self, assignment_id: int) -> Assignment:
        return await self._load(assignment_id)

    async def _load(self, assignment_id: int) -> Assignment:
        if assignment_id is None:
            raise RepositoryValidationError("assignment id is required")
        assignment = await self.assignments.find_by_id(assignment_id)
        if assignment is None:
            raise RepositoryNotFoundError(f"assignment not found: {assignment_id}")
        return assignment

    async def _transition(
        self,
        assignment_id: int,
        action: str,
        *,
        required: AssignmentState,
        target: AssignmentState,
        changes: dict[str, Any] | None = None,
    ) -> Assignment:
        current = await self._load(assignment_id)
        if current.state is not required:
            raise InvalidTransitionError(assignment_id, action, current.state, required)

        try:
            candidate = Assignment.model_validate({**current.model_dump(), **(changes or {}), "state": target})
        except ValueError as exc:
            raise RepositoryValidationError(str(exc)) from exc

        updated = await self.assignments.update(candidate, expected_state=required)
        logger.info(
            "assignment transition id=%s action=%s from=%s to=%s",
            assignment_id,
            action,
            required.value,
            target.value,
        )
        self.notifier.notify(
            f"assignment.{action}",
            {
                "id": updated.id,
                "code": updated.code,
                "notice_protocol": updated.notice_protocol,
                "student": updated.student or current.student,
                "state": updated.state.value,
            },
        )
        return updated


@lru_cache
def get_assignment_lifecycle() -> AssignmentLifecycle:
    return AssignmentLifecycle(assignments=get_assignment_repository(), notifier=get_notifier())
