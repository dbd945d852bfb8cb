from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bandi.schemas.assignments import Assignment

NOTICE_PROTOCOL_PATTERN = r"^Prot\. n\. [0-9]+$"
ARTICLE_INITIAL_PATTERN = r"^[A-Z a-z]+$"

CHILD_FIELDS = frozenset({"articles", "evaluation_criteria", "assignments", "application_sheet", "comment"})


class NoticeState(str, Enum):
    DRAFT = "Draft"
    IN_ACCEPTANCE = "In Acceptance"
    ACCEPTED = "Accepted"
    IN_APPROVAL = "In Approval"
    APPROVED = "Approved"
    PUBLISHED = "Published"
    EXPIRED = "Expired"
    WAITING_FOR_GRADED_LIST = "Waiting for Graded List"
    CLOSED = "Closed"


def coerce_notice_state(value: Any) -> NoticeState | None:
    if isinstance(value, NoticeState):
        return value
    try:
        return NoticeState(value)
    except ValueError:
        return None


class Article(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | None = None
    notice_protocol: str | None = None
    initial: str = Field(min_length=1, max_length=20, pattern=ARTICLE_INITIAL_PATTERN)
    text: str = Field(min_length=1, max_length=5000)


class EvaluationCriterion(BaseModel):
    model_config = ConfigDict(frozen=True)

    notice_protocol: str | None = None
    name: str = Field(min_length=1, max_length=125)
    max_score: int = Field(ge=1, le=27)


class ApplicationSheet(BaseModel):
    model_config = ConfigDict(frozen=True)

    notice_protocol: str | None = None
    documents_to_attach: str = Field(min_length=1, max_length=5000)


class Comment(BaseModel):
    model_config = ConfigDict(frozen=True)

    notice_protocol: str | None = None
    author: str | None = None
    text: str = Field(min_length=1, max_length=500)


class CommentIn(BaseModel):
    text: str = Field(min_length=1, max_length=500)


class NoticeFields(BaseModel):
    model_config = ConfigDict(frozen=True)

    protocol: str = Field(max_length=125, pattern=NOTICE_PROTOCOL_PATTERN)
    referent_professor: str | None = None
    description: str | None = Field(default=None, min_length=1, max_length=300)
    notice_subject: str | None = Field(default=None, min_length=1, max_length=2000)
    admission_requirements: str | None = Field(default=None, min_length=1, max_length=5000)
    assessable_titles: str | None = Field(default=None, min_length=1, max_length=5000)
    how_to_submit_applications: str | None = Field(default=None, min_length=1, max_length=5000)
    selection_board: str | None = Field(default=None, min_length=1, max_length=5000)
    acceptance: str | None = Field(default=None, min_length=1, max_length=5000)
    incompatibility: str | None = Field(default=None, min_length=1, max_length=5000)
    termination_of_the_assignment: str | None = Field(default=None, min_length=1, max_length=5000)
    nature_of_the_assignment: str | None = Field(default=None, min_length=1, max_length=5000)
    unused_funds: str | None = Field(default=None, min_length=1, max_length=5000)
    responsible_for_the_procedure: str | None = Field(default=None, min_length=1, max_length=5000)
    notice_funds: Decimal | None = Field(default=None, ge=1, decimal_places=2)
    state: NoticeState | None = None
    type: str | None = Field(default=None, min_length=1, max_length=50)
    deadline: date | None = None
    notice_file: str | None = None
    graded_list_file: str | None = None


def _require_unique(items: list[Any] | None, attribute: str, label: str) -> None:
    if items is None:
        return
    keys = [getattr(item, attribute) for item in items]
    if len(set(keys)) != len(keys):
        raise ValueError(f"duplicate {label} within the notice")


class Notice(NoticeFields):
    """A notice together with its owned child collections.

    Child collections are optional containers: ``None`` means the collection
    was not supplied (and is left untouched by an update), while an empty list
    asks for no children of that kind.
    """

    articles: list[Article] | None = Field(default=None, max_length=20)
    evaluation_criteria: list[EvaluationCriterion] | None = Field(default=None, max_length=6)
    assignments: list[Assignment] | None = Field(default=None, min_length=1, max_length=15)
    application_sheet: ApplicationSheet | None = None
    comment: Comment | None = None

    @field_validator("articles")
    @classmethod
    def _unique_articles(cls, value: list[Article] | None) -> list[Article] | None:
        _require_unique(value, "initial", "article initials")
        return value

    @field_validator("evaluation_criteria")
    @classmethod
    def _unique_criteria(cls, value: list[EvaluationCriterion] | None) -> list[EvaluationCriterion] | None:
        _require_unique(value, "name", "evaluation criterion names")
        return value

    @field_validator("assignments")
    @classmethod
    def _unique_assignments(cls, value: list[Assignment] | None) -> list[Assignment] | None:
        _require_unique(value, "code", "assignment codes")
        return value

    def scalar_fields(self, *, only_set: bool = False) -> dict[str, Any]:
        """Columns of the notice row itself, stripped of child collections."""
        fields = self.model_dump(exclude=set(CHILD_FIELDS), exclude_unset=only_set)
        fields["protocol"] = self.protocol
        return fields


class NoticeOut(NoticeFields):
    articles: list[Article] = Field(default_factory=list)
    evaluation_criteria: list[EvaluationCriterion] = Field(default_factory=list)
    assignments: list[Assignment] = Field(default_factory=list)
    application_sheet: ApplicationSheet | None = None
    comment: Comment | None = None
    # Child kinds whose fetch failed while hydrating; their collections are
    # reported empty.
    hydration_errors: dict[str, str] = Field(default_factory=dict)
