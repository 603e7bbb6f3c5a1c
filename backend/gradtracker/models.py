"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Programs and documents carry their owner's id; a `ProgramDocument` link
has no owner of its own and is always checked through its program.
"""

import enum
from typing import List, Optional
from datetime import date, datetime, timezone

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship


class ApplicationStatus(str, enum.Enum):
    """Application status of a program, stored by member name."""
    ACCEPTED = "Accepted"
    APPLIED = "Applied"
    IN_PROGRESS = "In Progress"
    REJECTED = "Rejected"
    OTHER = "Other"

    @property
    def label(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: Optional[str]) -> "ApplicationStatus":
        """Leniently map free text to a status.

        Input is trimmed and compared case-insensitively against both the
        member name (``IN_PROGRESS``) and the label (``In Progress``).
        Anything unrecognised, blank or missing becomes ``OTHER``.
        """
        if value is None:
            return cls.OTHER
        normalized = str(value).strip().lower()
        if not normalized:
            return cls.OTHER
        for status in cls:
            if status.name.lower() == normalized or status.value.lower() == normalized:
                return status
        return cls.OTHER


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `email`: unique login name, stored lower-cased
    - `password_hash`: hashed password string (never store plaintext)
    """
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=150)
    email: str = Field(index=True, nullable=False, unique=True, max_length=255)
    password_hash: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Program(SQLModel, table=True):
    """A university application tracked by one user."""
    __tablename__ = "programs"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    university_name: str = Field(max_length=255)
    field_of_study: Optional[str] = Field(default=None, max_length=255)
    focus_area: Optional[str] = None
    portal: Optional[str] = Field(default=None, max_length=255)
    website: Optional[str] = Field(default=None, max_length=255)
    deadline: Optional[date] = None
    status: ApplicationStatus = Field(default=ApplicationStatus.OTHER)
    tuition: Optional[str] = None
    requirements: Optional[str] = None
    notes: Optional[str] = None
    links: List["ProgramDocument"] = Relationship(
        back_populates="program",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class Document(SQLModel, table=True):
    """Metadata for an uploaded file.

    `file_path` is assigned by the server when the bytes are stored; it
    is never taken from the client.
    """
    __tablename__ = "documents"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    file_name: str = Field(max_length=255)
    file_path: str = Field(max_length=500)
    doc_type: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = None
    links: List["ProgramDocument"] = Relationship(back_populates="document")


class ProgramDocument(SQLModel, table=True):
    """Records that a document was used for a program application."""
    __tablename__ = "program_documents"
    __table_args__ = (UniqueConstraint("program_id", "document_id", name="uq_program_document"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    program_id: int = Field(foreign_key="programs.id", index=True, ondelete="CASCADE")
    document_id: int = Field(foreign_key="documents.id", index=True, ondelete="CASCADE")
    usage_notes: Optional[str] = None
    program: Optional[Program] = Relationship(back_populates="links")
    document: Optional[Document] = Relationship(back_populates="links")
