from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from bandi.schemas.assignments import STUDENT_EMAIL_PATTERN


class CandidatureState(str, Enum):
    EDITABLE = "Editable"
    DISABLED = "Disabled"
    REJECTED = "Rejected"
    IN_EVALUATION = "In Evaluation"
    EVALUATED = "Evaluated"


class Document(BaseModel):
    model_config = ConfigDict(frozen=True, ser_json_bytes="base64", val_json_bytes="base64")

    file_name: str = Field(min_length=1, max_length=125)
    student: str = Field(pattern=STUDENT_EMAIL_PATTERN)
    notice_protocol: str
    file: bytes


class Candidature(BaseModel):
    model_config = ConfigDict(frozen=True)

    student: str = Field(pattern=STUDENT_EMAIL_PATTERN)
    notice_protocol: str
    state: CandidatureState = CandidatureState.EDITABLE
    last_edit: datetime | None = None
    documents: list[Document] = Field(default_factory=list)
