from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable, Sequence
from functools import lru_cache
from typing import Any, TypeVar

from bandi.schemas.assignments import Assignment, AssignmentState
from bandi.schemas.notices import Comment, Notice, NoticeOut
from bandi.services.reconcile import Action, execute_actions, key_by, reconcile
from bandi.services.repository import (
    ReconciliationError,
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryValidationError,
    get_gateway,
)
from bandi.services.tables import (
    ApplicationSheetRepository,
    ArticleRepository,
    AssignmentRepository,
    CommentRepository,
    EvaluationCriterionRepository,
    NoticeRepository,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ARTICLE_KEY = key_by("initial", "id")
CRITERION_KEY = key_by("name")
ASSIGNMENT_KEY = key_by("code", "id")

# What a child kind hydrates to when its fetch fails.
EMPTY_CHILDREN: dict[str, Any] = {
    "articles": [],
    "evaluation_criteria": [],
    "assignments": [],
    "application_sheet": None,
    "comment": None,
}


class NoticeCoordinator:
    """Keeps a notice and the collections it owns in step.

    There is no transaction around the multi-table writes: child passes run
    concurrently and a failing pass leaves the passes that already committed
    in place. Callers that need the authoritative state re-read the notice.
    """

    def __init__(
        self,
        notices: NoticeRepository,
        articles: ArticleRepository,
        evaluation_criteria: EvaluationCriterionRepository,
        assignments: AssignmentRepository,
        application_sheets: ApplicationSheetRepository,
        comments: CommentRepository,
    ) -> None:
        self.notices = notices
        self.articles = articles
        self.evaluation_criteria = evaluation_criteria
        self.assignments = assignments
        self.application_sheets = application_sheets
        self.comments = comments

    async def create(self, notice: Notice) -> Notice:
        protocol = self._require_protocol(notice)
        if await self.notices.exists(protocol):
            raise RepositoryConflictError(f"notice already exists: {protocol}")

        await self.notices.create(notice.scalar_fields())
        owned = self._owned_children(notice)
        logger.info(
            "notice created protocol=%s articles=%s criteria=%s assignments=%s",
            protocol,
            len(owned.get("articles") or []),
            len(owned.get("evaluation_criteria") or []),
            len(owned.get("assignments") or []),
        )

        passes: dict[str, Awaitable[Any]] = {}
        if owned.get("articles"):
            passes["articles"] = self._create_all("articles", owned["articles"], self.articles.create)
        if owned.get("evaluation_criteria"):
            passes["evaluation_criteria"] = self._create_all(
                "evaluation_criteria", owned["evaluation_criteria"], self.evaluation_criteria.create
            )
        if owned.get("assignments"):
            passes["assignments"] = self._create_all("assignments", owned["assignments"], self.assignments.create)
        if owned.get("application_sheet") is not None:
            passes["application_sheet"] = self.application_sheets.create(owned["application_sheet"])
        await self._run_passes(protocol, passes)
        await self._reload_assignments(protocol, owned)

        return notice.model_copy(update={**owned, "comment": None})

    async def update(self, notice: Notice) -> Notice:
        """Overwrite the supplied scalar fields and reconcile the supplied child kinds.

        Child kinds left as ``None`` on ``notice`` are not touched.
        """
        protocol = self._require_protocol(notice)
        if not await self.notices.exists(protocol):
            raise RepositoryNotFoundError(f"0 results found for protocol: {protocol}")

        await self.notices.update(protocol, notice.scalar_fields(only_set=True))
        owned = self._owned_children(notice)

        passes: dict[str, Awaitable[Any]] = {}
        if owned.get("articles") is not None:
            passes["articles"] = self._reconcile_kind(
                "articles",
                self.articles.find_by_notice(protocol),
                owned["articles"],
                ARTICLE_KEY,
                create=self.articles.create,
                update=self.articles.update,
                remove=self.articles.remove,
            )
        if owned.get("evaluation_criteria") is not None:
            passes["evaluation_criteria"] = self._reconcile_kind(
                "evaluation_criteria",
                self.evaluation_criteria.find_by_notice(protocol),
                owned["evaluation_criteria"],
                CRITERION_KEY,
                create=self.evaluation_criteria.create,
                update=self.evaluation_criteria.update,
                remove=self.evaluation_criteria.remove,
            )
        if owned.get("assignments") is not None:
            passes["assignments"] = self._reconcile_kind(
                "assignments",
                self.assignments.find_by_notice(protocol),
                owned["assignments"],
                ASSIGNMENT_KEY,
                create=self.assignments.create,
                # Lifecycle columns belong to the assignment workflow.
                update=self.assignments.update_details,
                remove=self.assignments.remove,
            )
        if owned.get("application_sheet") is not None:
            passes["application_sheet"] = self.application_sheets.upsert(owned["application_sheet"])
        await self._run_passes(protocol, passes)
        await self._reload_assignments(protocol, owned)

        logger.info("notice updated protocol=%s reconciled=%s", protocol, sorted(passes))
        return notice.model_copy(update={**owned, "comment": None})

    async def remove(self, protocol: str) -> bool:
        """Delete the notice row; owned children go with it through the storage-level cascade."""
        if not protocol:
            raise RepositoryValidationError("notice protocol is required")
        removed = await self.notices.remove(protocol)
        logger.info("notice removal protocol=%s removed=%s", protocol, removed)
        return removed

    async def exists(self, protocol: str) -> bool:
        if not protocol:
            raise RepositoryValidationError("notice protocol is required")
        return await self.notices.exists(protocol)

    async def find_by_protocol(self, protocol: str) -> NoticeOut:
        row = await self.notices.find_by_protocol(protocol)
        if row is None:
            raise RepositoryNotFoundError(f"0 results found for protocol: {protocol}")
        return await self._hydrate(row)

    async def find_by_state(self, state: str) -> list[NoticeOut]:
        return await self._hydrate_all(await self.notices.find_by_state(state))

    async def find_by_referent(self, referent: str) -> list[NoticeOut]:
        return await self._hydrate_all(await self.notices.find_by_referent(referent))

    async def find_all(self) -> list[NoticeOut]:
        return await self._hydrate_all(await self.notices.find_all())

    async def set_comment(self, protocol: str, comment: Comment) -> Comment:
        if not await self.notices.exists(protocol):
            raise RepositoryNotFoundError(f"0 results found for protocol: {protocol}")
        return await self.comments.upsert(comment.model_copy(update={"notice_protocol": protocol}))

    async def _hydrate_all(self, rows: Sequence[dict[str, Any]]) -> list[NoticeOut]:
        return list(await asyncio.gather(*(self._hydrate(row) for row in rows)))

    async def _hydrate(self, row: dict[str, Any]) -> NoticeOut:
        protocol = row["protocol"]
        fetches: dict[str, Awaitable[Any]] = {
            "articles": self.articles.find_by_notice(protocol),
            "evaluation_criteria": self.evaluation_criteria.find_by_notice(protocol),
            "assignments": self.assignments.find_by_notice(protocol),
            "application_sheet": self.application_sheets.find_by_notice(protocol),
            "comment": self.comments.find_by_protocol(protocol),
        }
        results = await asyncio.gather(*fetches.values(), return_exceptions=True)

        fields = dict(row)
        hydration_errors: dict[str, str] = {}
        for kind, result in zip(fetches, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("partial hydration protocol=%s kind=%s error=%s", protocol, kind, result)
                hydration_errors[kind] = str(result)
                result = EMPTY_CHILDREN[kind]
            fields[kind] = result
        return NoticeOut(**fields, hydration_errors=hydration_errors)

    async def _reload_assignments(self, protocol: str, owned: dict[str, Any]) -> None:
        # Stored rows carry the generated ids and the lifecycle columns the write left alone.
        if owned.get("assignments") is not None:
            owned["assignments"] = await self.assignments.find_by_notice(protocol)

    async def _reconcile_kind(
        self,
        label: str,
        persisted: Awaitable[Sequence[T]],
        desired: Sequence[T],
        key_of: Callable[[T], Hashable],
        *,
        create: Callable[[T], Awaitable[Any]],
        update: Callable[[T], Awaitable[Any]],
        remove: Callable[[T], Awaitable[Any]],
    ) -> list[Any]:
        actions = reconcile(await persisted, desired, key_of)
        return await execute_actions(actions, create=create, update=update, remove=remove, label=label)

    @staticmethod
    async def _create_all(label: str, items: Sequence[T], create: Callable[[T], Awaitable[Any]]) -> list[Any]:
        actions = [Action.create(item) for item in items]
        return await execute_actions(actions, create=create, label=label)

    @staticmethod
    async def _run_passes(protocol: str, passes: dict[str, Awaitable[Any]]) -> None:
        results = await asyncio.gather(*passes.values(), return_exceptions=True)
        errors: list[BaseException] = []
        for label, result in zip(passes, results):
            if isinstance(result, ReconciliationError):
                errors.extend(result.errors)
            elif isinstance(result, BaseException):
                errors.append(result)
            else:
                continue
            logger.error("notice child pass failed protocol=%s kind=%s error=%s", protocol, label, result)
        if errors:
            raise ReconciliationError(f"notice {protocol} was only partially written", errors)

    @staticmethod
    def _require_protocol(notice: Notice) -> str:
        if notice is None or not notice.protocol:
            raise RepositoryValidationError("notice protocol is required")
        return notice.protocol

    @staticmethod
    def _owned_children(notice: Notice) -> dict[str, Any]:
        """Stamp the notice protocol on every supplied child."""
        protocol = notice.protocol
        owned: dict[str, Any] = {}
        if notice.articles is not None:
            owned["articles"] = [item.model_copy(update={"notice_protocol": protocol}) for item in notice.articles]
        if notice.evaluation_criteria is not None:
            owned["evaluation_criteria"] = [
                item.model_copy(update={"notice_protocol": protocol}) for item in notice.evaluation_criteria
            ]
        if notice.assignments is not None:
            owned["assignments"] = [
                _stamp_assignment(item, protocol) for item in notice.assignments
            ]
        if notice.application_sheet is not None:
            owned["application_sheet"] = notice.application_sheet.model_copy(update={"notice_protocol": protocol})
        return owned


def _stamp_assignment(assignment: Assignment, protocol: str) -> Assignment:
    # New assignments enter the lifecycle unbound; existing ones keep their
    # stored lifecycle columns because updates only touch descriptive columns.
    return assignment.model_copy(
        update={
            "notice_protocol": protocol,
            "state": AssignmentState.UNASSIGNED,
            "student": None,
            "note": None,
        }
    )


@lru_cache
def get_notice_coordinator() -> NoticeCoordinator:
    gateway = get_gateway()
    return NoticeCoordinator(
        notices=NoticeRepository(gateway),
        articles=ArticleRepository(gateway),
        evaluation_criteria=EvaluationCriterionRepository(gateway),
        assignments=AssignmentRepository(gateway),
        application_sheets=ApplicationSheetRepository(gateway),
        comments=CommentRepository(gateway),
    )
