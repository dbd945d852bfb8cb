from pydantic import BaseModel, ConfigDict, Field

from bandi.schemas.assignments import STUDENT_EMAIL_PATTERN
from bandi.schemas.users import Student


class Rating(BaseModel):
    model_config = ConfigDict(frozen=True)

    student: Student
    assignment_id: int = Field(ge=1)
    titles_score: int = Field(ge=0)
    interview_score: int = Field(ge=0)


class RatingIn(BaseModel):
    student: str = Field(pattern=STUDENT_EMAIL_PATTERN)
    assignment_id: int = Field(ge=1)
    titles_score: int = Field(ge=0)
    interview_score: int = Field(ge=0)
