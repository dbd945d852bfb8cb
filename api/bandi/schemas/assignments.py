from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

STUDENT_EMAIL_PATTERN = r"^[a-z]\.[a-z]+[0-9]*@(studenti\.)?unisa\.it$"
ASSIGNMENT_CODE_PATTERN = r"^[A-Z]+/[0-9]+$"

AssignmentTitle = Literal["PhD", "Master"]


class AssignmentState(str, Enum):
    UNASSIGNED = "Unassigned"
    WAITING = "Waiting"
    BOOKED = "Booked"
    ASSIGNED = "Assigned"
    OVER = "Over"


# States in which an assignment is bound to a student.
BOUND_STATES = frozenset(
    {AssignmentState.WAITING, AssignmentState.BOOKED, AssignmentState.ASSIGNED, AssignmentState.OVER}
)


class Assignment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | None = None
    notice_protocol: str | None = None
    code: str = Field(min_length=1, max_length=30, pattern=ASSIGNMENT_CODE_PATTERN)
    student: str | None = Field(default=None, pattern=STUDENT_EMAIL_PATTERN)
    title: AssignmentTitle
    total_number_hours: int = Field(ge=1, le=50)
    hourly_cost: Decimal = Field(ge=1, le=150, decimal_places=2)
    ht_fund: str | None = Field(default=None, max_length=50)
    activity_description: str = Field(min_length=1, max_length=200)
    state: AssignmentState = AssignmentState.UNASSIGNED
    note: str | None = Field(default=None, min_length=1, max_length=500)

    @model_validator(mode="after")
    def _check_student_binding(self) -> "Assignment":
        if (self.student is not None) != (self.state in BOUND_STATES):
            raise ValueError(f"student must be set exactly when state is one of {sorted(s.value for s in BOUND_STATES)}")
        if self.state is AssignmentState.OVER and not self.note:
            raise ValueError("note is required once the assignment is over")
        return self


class AssignmentFilter(BaseModel):
    code: str | None = None
    notice_protocol: str | None = None
    state: AssignmentState | None = None
    student: str | None = None


class SendRequestIn(BaseModel):
    student: str = Field(pattern=STUDENT_EMAIL_PATTERN)


class CloseIn(BaseModel):
    note: str = Field(min_length=1, max_length=500)
