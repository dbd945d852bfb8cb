from datetime import date

from pydantic import BaseModel, ConfigDict, Field

from bandi.core.auth import Role
from bandi.schemas.assignments import STUDENT_EMAIL_PATTERN

NAME_PATTERN = r"^[A-Za-z ']+$"
REGISTRATION_NUMBER_PATTERN = r"^[0-9A-Za-z ']*$"


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str = Field(min_length=1, max_length=125)
    name: str = Field(min_length=1, max_length=50, pattern=NAME_PATTERN)
    surname: str = Field(min_length=1, max_length=50, pattern=NAME_PATTERN)
    role: Role
    verified: bool = False


class Student(User):
    email: str = Field(pattern=STUDENT_EMAIL_PATTERN)
    role: Role = Role.STUDENT
    registration_number: str = Field(min_length=1, max_length=20, pattern=REGISTRATION_NUMBER_PATTERN)
    birth_date: date


class UserFilter(BaseModel):
    email: str | None = None
    name: str | None = Field(default=None, pattern=NAME_PATTERN)
    surname: str | None = Field(default=None, pattern=NAME_PATTERN)
    role: Role | None = None
    verified: bool | None = None
