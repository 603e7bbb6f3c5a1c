"""Repository classes encapsulating database operations.

Each repository is small and focused on a single table (users,
programs, documents, program-document links). The `*_for_owner`
finders are the authorization primitive: they only ever return rows
whose `user_id` matches the caller.

Repositories stage changes with `flush()` and leave the commit to the
calling service, so a service's existence checks, ownership checks and
write all land in one transaction.
"""

from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from . import models

# Program columns matched with a case-insensitive "contains".
PROGRAM_TEXT_FILTERS = (
    "university_name",
    "field_of_study",
    "focus_area",
    "portal",
    "website",
    "tuition",
    "requirements",
)


class UserRepository:
    """Lookups and inserts for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, user: models.User) -> models.User:
        """Stage a new or changed user and assign its id."""
        self.session.add(user)
        self.session.flush()
        return user

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by (lower-cased) email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email)
        return self.session.exec(stmt).first()

    def exists_by_email(self, email: str) -> bool:
        stmt = select(models.User.id).where(models.User.email == email)
        return self.session.exec(stmt).first() is not None


class ProgramRepository:
    """Owner-scoped queries for `Program` records."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, program: models.Program) -> models.Program:
        self.session.add(program)
        self.session.flush()
        return program

    def get(self, program_id: int) -> Optional[models.Program]:
        """Fetch a program by id regardless of owner."""
        return self.session.get(models.Program, program_id)

    def get_for_owner(self, program_id: int, owner_id: int) -> Optional[models.Program]:
        """Fetch a program only if it belongs to `owner_id`."""
        stmt = select(models.Program).where(
            models.Program.id == program_id,
            models.Program.user_id == owner_id,
        )
        return self.session.exec(stmt).first()

    def _filtered(self, stmt, owner_id: int, filters: Optional[Dict[str, object]]):
        # the owner predicate is always applied first, whatever else is asked for
        stmt = stmt.where(models.Program.user_id == owner_id)
        for key, value in (filters or {}).items():
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            if key in PROGRAM_TEXT_FILTERS:
                column = getattr(models.Program, key)
                stmt = stmt.where(func.lower(column).contains(str(value).strip().lower(), autoescape=True))
            elif key == "status":
                stmt = stmt.where(models.Program.status == models.ApplicationStatus.parse(str(value)))
            elif key == "deadline" and isinstance(value, date):
                stmt = stmt.where(models.Program.deadline == value)
        return stmt

    def list_for_owner(self, owner_id: int, filters: Optional[Dict[str, object]] = None,
                       offset: Optional[int] = None, limit: Optional[int] = None) -> List[models.Program]:
        """Return the owner's programs, optionally filtered and paged, ordered by id."""
        stmt = self._filtered(select(models.Program), owner_id, filters).order_by(models.Program.id)
        if offset is not None:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.exec(stmt).all()

    def count_for_owner(self, owner_id: int, filters: Optional[Dict[str, object]] = None) -> int:
        stmt = self._filtered(select(func.count(models.Program.id)), owner_id, filters)
        return self.session.exec(stmt).one()

    def status_counts(self, owner_id: int) -> Dict[models.ApplicationStatus, int]:
        """Return `{status: n}` for the owner's programs."""
        stmt = (
            select(models.Program.status, func.count(models.Program.id))
            .where(models.Program.user_id == owner_id)
            .group_by(models.Program.status)
        )
        return {status: n for status, n in self.session.exec(stmt).all()}

    def delete(self, program: models.Program) -> None:
        self.session.delete(program)
        self.session.flush()


class DocumentRepository:
    """Owner-scoped queries for `Document` metadata rows."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, document: models.Document) -> models.Document:
        self.session.add(document)
        self.session.flush()
        return document

    def get(self, document_id: int) -> Optional[models.Document]:
        return self.session.get(models.Document, document_id)

    def get_for_owner(self, document_id: int, owner_id: int) -> Optional[models.Document]:
        """Fetch a document only if it belongs to `owner_id`."""
        stmt = select(models.Document).where(
            models.Document.id == document_id,
            models.Document.user_id == owner_id,
        )
        return self.session.exec(stmt).first()

    def _filtered(self, stmt, owner_id: int, doc_type: Optional[str]):
        stmt = stmt.where(models.Document.user_id == owner_id)
        if doc_type and doc_type.strip():
            stmt = stmt.where(func.lower(models.Document.doc_type).contains(doc_type.strip().lower(), autoescape=True))
        return stmt

    def list_for_owner(self, owner_id: int, doc_type: Optional[str] = None,
                       offset: Optional[int] = None, limit: Optional[int] = None) -> List[models.Document]:
        stmt = self._filtered(select(models.Document), owner_id, doc_type).order_by(models.Document.id)
        if offset is not None:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.exec(stmt).all()

    def count_for_owner(self, owner_id: int, doc_type: Optional[str] = None) -> int:
        stmt = self._filtered(select(func.count(models.Document.id)), owner_id, doc_type)
        return self.session.exec(stmt).one()

    def delete(self, document: models.Document) -> None:
        self.session.delete(document)
        self.session.flush()


class ProgramDocumentRepository:
    """Queries for program-document link rows."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, link: models.ProgramDocument) -> models.ProgramDocument:
        self.session.add(link)
        self.session.flush()
        return link

    def get(self, program_doc_id: int) -> Optional[models.ProgramDocument]:
        return self.session.get(models.ProgramDocument, program_doc_id)

    def get_for_pair(self, program_id: int, document_id: int) -> Optional[models.ProgramDocument]:
        """Return the link for `(program_id, document_id)` if one exists."""
        stmt = select(models.ProgramDocument).where(
            models.ProgramDocument.program_id == program_id,
            models.ProgramDocument.document_id == document_id,
        )
        return self.session.exec(stmt).first()

    def list_for_program(self, program_id: int) -> List[models.ProgramDocument]:
        stmt = (
            select(models.ProgramDocument)
            .where(models.ProgramDocument.program_id == program_id)
            .order_by(models.ProgramDocument.id)
        )
        return self.session.exec(stmt).all()

    def exists_for_document(self, document_id: int) -> bool:
        """Return True if any program still links to `document_id`."""
        stmt = select(models.ProgramDocument.id).where(models.ProgramDocument.document_id == document_id)
        return self.session.exec(stmt).first() is not None

    def delete(self, link: models.ProgramDocument) -> None:
        self.session.delete(link)
        self.session.flush()
