from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

import pytest

from bandi.schemas.assignments import Assignment, AssignmentState
from bandi.schemas.notices import Comment, Notice, NoticeState
from bandi.services.notices import NoticeCoordinator
from bandi.services.repository import (
    ReconciliationError,
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)

PROTOCOL = "Prot. n. 1042"


def _assignment(code: str, **overrides: Any) -> dict[str, Any]:
    return {
        "code": code,
        "title": "PhD",
        "total_number_hours": 20,
        "hourly_cost": Decimal("35.00"),
        "activity_description": "Lab tutoring",
        **overrides,
    }


def _notice(**overrides: Any) -> Notice:
    payload: dict[str, Any] = {
        "protocol": PROTOCOL,
        "referent_professor": "m.rossi@unisa.it",
        "description": "Tutoring for first year courses",
        "state": "Draft",
        "articles": [
            {"initial": "VISTO", "text": "the regulation on tutoring"},
            {"initial": "CONSIDERATO", "text": "the needs of the department"},
        ],
        "evaluation_criteria": [
            {"name": "Titles", "max_score": 10},
            {"name": "Interview", "max_score": 20},
        ],
        "assignments": [_assignment("AGRI/01"), _assignment("AGRI/02", title="Master")],
        "application_sheet": {"documents_to_attach": "CV and transcript"},
    }
    payload.update(overrides)
    return Notice(**payload)


def test_create_writes_parent_and_every_child(coordinator: NoticeCoordinator, store) -> None:
    created = asyncio.run(coordinator.create(_notice()))

    # one notice row, 2 articles, 2 criteria, 2 assignments, 1 application sheet
    assert len(store.writes) == 1 + 2 + 2 + 2 + 1
    assert store.writes[0] == "notice.create"
    assert {article.notice_protocol for article in created.articles} == {PROTOCOL}
    assert created.comment is None


def test_create_rejects_existing_protocol(coordinator: NoticeCoordinator, store) -> None:
    asyncio.run(coordinator.create(_notice()))
    writes_before = len(store.writes)

    with pytest.raises(RepositoryConflictError):
        asyncio.run(coordinator.create(_notice()))

    assert len(store.writes) == writes_before


def test_create_requires_protocol(coordinator: NoticeCoordinator, store) -> None:
    with pytest.raises(RepositoryValidationError):
        asyncio.run(coordinator.create(Notice.model_construct(protocol="")))

    assert store.writes == []


def test_create_stamps_assignments_unbound(coordinator: NoticeCoordinator, store) -> None:
    created = asyncio.run(coordinator.create(_notice()))

    assert {item.state for item in store.assignments.values()} == {AssignmentState.UNASSIGNED}
    assert {item.student for item in store.assignments.values()} == {None}
    assert sorted(item.id for item in created.assignments) == sorted(store.assignments)


def test_create_surfaces_partial_failure(coordinator: NoticeCoordinator, store) -> None:
    store.failures["articles.create"] = RepositoryUnavailableError("database operation failed")

    with pytest.raises(ReconciliationError) as exc_info:
        asyncio.run(coordinator.create(_notice()))

    assert len(exc_info.value.errors) == 2
    # Sibling passes are not rolled back.
    assert PROTOCOL in store.notices
    assert len(store.evaluation_criteria) == 2
    assert len(store.assignments) == 2
    assert store.articles == {}


def test_update_requires_existing_notice(coordinator: NoticeCoordinator) -> None:
    with pytest.raises(RepositoryNotFoundError) as exc_info:
        asyncio.run(coordinator.update(_notice()))

    assert str(exc_info.value) == f"0 results found for protocol: {PROTOCOL}"


def test_update_reconciles_articles_by_initial(coordinator: NoticeCoordinator, store) -> None:
    asyncio.run(coordinator.create(_notice()))

    asyncio.run(
        coordinator.update(
            Notice(
                protocol=PROTOCOL,
                articles=[
                    {"initial": "VISTO", "text": "the amended regulation"},
                    {"initial": "DECRETA", "text": "the call is opened"},
                ],
            )
        )
    )

    texts = {article.initial: article.text for article in store.articles.values()}
    assert texts == {"VISTO": "the amended regulation", "DECRETA": "the call is opened"}
    assert "articles.remove" in store.writes


def test_update_adds_article_next_to_modified_one(coordinator: NoticeCoordinator, store) -> None:
    asyncio.run(coordinator.create(_notice(articles=[{"initial": "VISTO", "text": "the regulation on tutoring"}])))
    store.writes.clear()

    asyncio.run(
        coordinator.update(
            Notice(
                protocol=PROTOCOL,
                articles=[
                    {"initial": "VISTO", "text": "the regulation on tutoring, as amended"},
                    {"initial": "CONSIDERATO", "text": "the needs of the department"},
                ],
            )
        )
    )

    assert sorted(store.writes) == ["articles.create", "articles.update", "notice.update"]
    assert len(store.articles) == 2
    assert store.articles[(PROTOCOL, "VISTO")].text == "the regulation on tutoring, as amended"


def test_update_leaves_absent_child_kinds_untouched(coordinator: NoticeCoordinator, store) -> None:
    asyncio.run(coordinator.create(_notice()))
    store.writes.clear()

    asyncio.run(coordinator.update(Notice(protocol=PROTOCOL, description="Updated description")))

    assert store.writes == ["notice.update"]
    assert len(store.assignments) == 2
    assert len(store.articles) == 2
    assert store.notices[PROTOCOL]["description"] == "Updated description"
    # Scalars that were not supplied keep their stored value.
    assert store.notices[PROTOCOL]["referent_professor"] == "m.rossi@unisa.it"


def test_update_with_empty_list_clears_kind(coordinator: NoticeCoordinator, store) -> None:
    asyncio.run(coordinator.create(_notice()))

    asyncio.run(coordinator.update(Notice(protocol=PROTOCOL, evaluation_criteria=[])))

    assert store.evaluation_criteria == {}
    assert len(store.articles) == 2


def test_update_keeps_assignment_lifecycle_columns(coordinator: NoticeCoordinator, store) -> None:
    asyncio.run(coordinator.create(_notice()))
    (assignment_id,) = [key for key, item in store.assignments.items() if item.code == "AGRI/01"]
    store.assignments[assignment_id] = store.assignments[assignment_id].model_copy(
        update={"state": AssignmentState.WAITING, "student": "a.bianchi@studenti.unisa.it"}
    )

    asyncio.run(
        coordinator.update(
            Notice(
                protocol=PROTOCOL,
                assignments=[_assignment("AGRI/01", total_number_hours=40), _assignment("AGRI/03")],
            )
        )
    )

    kept = store.assignments[assignment_id]
    assert kept.total_number_hours == 40
    assert kept.state is AssignmentState.WAITING
    assert kept.student == "a.bianchi@studenti.unisa.it"
    assert sorted(item.code for item in store.assignments.values()) == ["AGRI/01", "AGRI/03"]


def test_update_returns_stored_assignment_state(coordinator: NoticeCoordinator, store) -> None:
    asyncio.run(coordinator.create(_notice()))
    (assignment_id,) = [key for key, item in store.assignments.items() if item.code == "AGRI/01"]
    store.assignments[assignment_id] = store.assignments[assignment_id].model_copy(
        update={"state": AssignmentState.WAITING, "student": "a.bianchi@studenti.unisa.it"}
    )

    updated = asyncio.run(
        coordinator.update(Notice(protocol=PROTOCOL, assignments=[_assignment("AGRI/01", total_number_hours=40)]))
    )

    (returned,) = updated.assignments
    assert returned.id == assignment_id
    assert returned.total_number_hours == 40
    assert returned.state is AssignmentState.WAITING
    assert returned.student == "a.bianchi@studenti.unisa.it"


def test_update_upserts_application_sheet(coordinator: NoticeCoordinator, store) -> None:
    asyncio.run(coordinator.create(_notice()))

    asyncio.run(coordinator.update(Notice(protocol=PROTOCOL, application_sheet={"documents_to_attach": "CV only"})))

    assert store.application_sheets[PROTOCOL].documents_to_attach == "CV only"


def test_find_by_protocol_hydrates_children(coordinator: NoticeCoordinator) -> None:
    asyncio.run(coordinator.create(_notice()))

    notice = asyncio.run(coordinator.find_by_protocol(PROTOCOL))

    assert [article.initial for article in notice.articles] == ["VISTO", "CONSIDERATO"]
    assert len(notice.evaluation_criteria) == 2
    assert [item.code for item in notice.assignments] == ["AGRI/01", "AGRI/02"]
    assert notice.application_sheet is not None
    assert notice.comment is None
    assert notice.hydration_errors == {}


def test_find_by_protocol_reports_failed_child_fetch(coordinator: NoticeCoordinator, store) -> None:
    asyncio.run(coordinator.create(_notice()))
    store.failures["articles.find"] = RepositoryUnavailableError("database operation failed")

    notice = asyncio.run(coordinator.find_by_protocol(PROTOCOL))

    assert notice.articles == []
    assert notice.hydration_errors == {"articles": "database operation failed"}
    assert len(notice.assignments) == 2


def test_find_by_protocol_missing_notice(coordinator: NoticeCoordinator) -> None:
    with pytest.raises(RepositoryNotFoundError) as exc_info:
        asyncio.run(coordinator.find_by_protocol("Prot. n. 9"))

    assert str(exc_info.value) == "0 results found for protocol: Prot. n. 9"


def test_find_by_state_and_referent(coordinator: NoticeCoordinator) -> None:
    asyncio.run(coordinator.create(_notice()))
    asyncio.run(
        coordinator.create(
            _notice(protocol="Prot. n. 7", state="Published", referent_professor="l.verdi@unisa.it")
        )
    )

    drafts = asyncio.run(coordinator.find_by_state(NoticeState.DRAFT.value))
    by_referent = asyncio.run(coordinator.find_by_referent("l.verdi@unisa.it"))
    everything = asyncio.run(coordinator.find_all())

    assert [notice.protocol for notice in drafts] == [PROTOCOL]
    assert [notice.protocol for notice in by_referent] == ["Prot. n. 7"]
    assert len(everything) == 2


def test_remove_cascades_to_children(coordinator: NoticeCoordinator, store) -> None:
    asyncio.run(coordinator.create(_notice()))

    assert asyncio.run(coordinator.remove(PROTOCOL)) is True
    assert asyncio.run(coordinator.exists(PROTOCOL)) is False
    assert store.articles == {}
    assert store.assignments == {}
    assert asyncio.run(coordinator.remove(PROTOCOL)) is False


def test_set_comment_requires_notice(coordinator: NoticeCoordinator, store) -> None:
    with pytest.raises(RepositoryNotFoundError):
        asyncio.run(coordinator.set_comment(PROTOCOL, Comment(author="ddi@unisa.it", text="Please fix art. 2")))

    asyncio.run(coordinator.create(_notice()))
    asyncio.run(coordinator.set_comment(PROTOCOL, Comment(author="ddi@unisa.it", text="Please fix art. 2")))

    notice = asyncio.run(coordinator.find_by_protocol(PROTOCOL))
    assert notice.comment is not None
    assert notice.comment.text == "Please fix art. 2"
    assert notice.comment.notice_protocol == PROTOCOL


def test_assignment_payload_rejects_student_on_unassigned() -> None:
    with pytest.raises(ValueError):
        Assignment(**_assignment("AGRI/01", student="a.bianchi@studenti.unisa.it"))
