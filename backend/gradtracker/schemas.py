"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests. Field names are snake_case in Python and
camelCase on the wire (`universityName`, `programDocId`); both spellings
are accepted on input.

Update payloads are partial: services read `model_dump(exclude_unset=True)`
so a field left out of the JSON is untouched while an explicit `null`
clears it.
"""

from datetime import date
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# SQLite INTEGER primary keys are signed 64-bit
MAX_ID = 2 ** 63 - 1


class ApiModel(BaseModel):
    """Base for every API shape: camelCase aliases, snake_case attributes."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterIn(ApiModel):
    """Payload for user registration."""
    name: str
    email: str
    password: str


class LoginIn(ApiModel):
    """Payload for the login endpoint."""
    email: str
    password: str


class UserUpdateIn(ApiModel):
    """Partial profile update."""
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class PasswordChangeIn(ApiModel):
    old_password: str
    new_password: str


class UserOut(ApiModel):
    """Public view of a user; the password hash is never included."""
    user_id: int
    name: str
    email: str


class LoginOut(ApiModel):
    """Authentication response containing an access token."""
    token: str
    user: UserOut


class ProgramCreate(ApiModel):
    """Request body for creating a program.

    `status` is free text and is parsed leniently; unknown values are
    stored as `Other`.
    """
    university_name: str
    field_of_study: Optional[str] = None
    focus_area: Optional[str] = None
    portal: Optional[str] = None
    website: Optional[str] = None
    deadline: Optional[date] = None
    status: Optional[str] = None
    tuition: Optional[str] = None
    requirements: Optional[str] = None
    notes: Optional[str] = None


class ProgramUpdate(ApiModel):
    university_name: Optional[str] = None
    field_of_study: Optional[str] = None
    focus_area: Optional[str] = None
    portal: Optional[str] = None
    website: Optional[str] = None
    deadline: Optional[date] = None
    status: Optional[str] = None
    tuition: Optional[str] = None
    requirements: Optional[str] = None
    notes: Optional[str] = None


class ProgramOut(ApiModel):
    program_id: int
    user_id: int
    university_name: str
    field_of_study: Optional[str] = None
    focus_area: Optional[str] = None
    portal: Optional[str] = None
    website: Optional[str] = None
    deadline: Optional[date] = None
    status: str
    tuition: Optional[str] = None
    requirements: Optional[str] = None
    notes: Optional[str] = None


class DocumentUpdate(ApiModel):
    file_name: Optional[str] = None
    doc_type: Optional[str] = None
    notes: Optional[str] = None


class DocumentOut(ApiModel):
    document_id: int
    user_id: int
    file_name: str
    file_path: str
    doc_type: Optional[str] = None
    notes: Optional[str] = None


class ProgramDocumentCreate(ApiModel):
    """Request body for linking a document to a program."""
    document_id: int = Field(ge=1, le=MAX_ID)
    usage_notes: Optional[str] = None


class ProgramDocumentUpdate(ApiModel):
    usage_notes: Optional[str] = None


class ProgramDocumentOut(ApiModel):
    """Link projection: ids and notes only, no nested program/document."""
    program_doc_id: int
    program_id: int
    document_id: int
    usage_notes: Optional[str] = None


class DashboardStatsOut(ApiModel):
    total_programs: int
    total_documents: int
    status_counts: Dict[str, int]
