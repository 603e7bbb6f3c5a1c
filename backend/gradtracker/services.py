"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories.
Services are intentionally thin: they validate input, load the target
row, check that the caller owns it, perform the write and map the
entity to its response schema.

Ownership rule shared by every service: a missing row raises
`NotFoundError`; a row owned by someone else raises `ForbiddenError`.

Each public method runs inside `_transaction()`, which commits once at
the end. Any error raised before that point rolls the whole call back,
and an `IntegrityError` from the store (duplicate key, vanished foreign
key) surfaces as `ConflictError`.
"""

import logging
import re
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from . import models, repositories, schemas
from .config import settings
from .errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError, ValidationError

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9+_.-]+@[A-Za-z0-9.-]+$")
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

logger = logging.getLogger("gradtracker.services")


def issue_token(user: models.User) -> str:
    """Return a signed JWT carrying the user's id and email."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user.email,
        "user_id": user.id,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=settings.JWT_EXPIRE_HOURS)).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> int:
    """Verify `token` and return the user id it was issued for.

    Raises `UnauthorizedError` for expired, malformed or wrongly signed
    tokens and for tokens without an integer `user_id` claim.
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("token expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("invalid token")
    user_id = payload.get("user_id")
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        raise UnauthorizedError("invalid token payload")
    return user_id


def _page_bounds(page: Optional[int], size: Optional[int]) -> Tuple[Optional[int], Optional[int]]:
    """Translate 0-based `page`/`size` into `(offset, limit)`.

    Returns `(None, None)` when neither is given so callers get every row.
    """
    if page is None and size is None:
        return None, None
    page = 0 if page is None else page
    size = DEFAULT_PAGE_SIZE if size is None else size
    if page < 0:
        raise ValidationError("page must be >= 0")
    if size < 1 or size > MAX_PAGE_SIZE:
        raise ValidationError(f"size must be between 1 and {MAX_PAGE_SIZE}")
    return page * size, size


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _is_foreign_key_failure(exc: IntegrityError) -> bool:
    # SQLite reports "FOREIGN KEY constraint failed"
    return "foreign key" in str(exc.orig).lower()


class _Service:
    """Shared transaction handling for the service classes below."""
    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def _transaction(self, conflict_message: str = "conflicting change",
                     missing_message: str = "a referenced record no longer exists"):
        try:
            yield
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            logger.warning("integrity error rolled back: %s", exc.orig)
            if _is_foreign_key_failure(exc):
                raise ConflictError(missing_message) from exc
            raise ConflictError(conflict_message) from exc
        except Exception:
            self.session.rollback()
            raise


class AuthService(_Service):
    """Registration, login and profile operations for users."""
    def __init__(self, session: Session, user_repo: Optional[repositories.UserRepository] = None):
        super().__init__(session)
        self.user_repo = user_repo or repositories.UserRepository(session)

    @staticmethod
    def to_out(user: models.User) -> schemas.UserOut:
        return schemas.UserOut(user_id=user.id, name=user.name, email=user.email)

    def _normalize_email(self, email: Optional[str]) -> str:
        if _is_blank(email):
            raise ValidationError("email is required")
        normalized = email.strip().lower()
        if not EMAIL_PATTERN.match(normalized):
            raise ValidationError("email is invalid")
        return normalized

    def register(self, name: str, email: str, password: str) -> schemas.UserOut:
        """Create a new user with a hashed password.

        Raises `ValidationError` for a blank name, invalid email or blank
        password and `ConflictError` when the email is already taken.
        """
        if _is_blank(name):
            raise ValidationError("name is required")
        normalized = self._normalize_email(email)
        if _is_blank(password):
            raise ValidationError("password is required")
        with self._transaction(f"email already exists: {normalized}"):
            if self.user_repo.exists_by_email(normalized):
                raise ConflictError(f"email already exists: {normalized}")
            user = self.user_repo.add(models.User(
                name=name.strip(),
                email=normalized,
                password_hash=PWD_CTX.hash(password),
            ))
            out = self.to_out(user)
        logger.info("user registered id=%s", out.user_id)
        return out

    def authenticate(self, email: str, password: str) -> Optional[models.User]:
        """Return the user when the credentials match, else `None`."""
        if _is_blank(email) or password is None:
            return None
        # One lookup by email then verify the supplied password hash.
        user = self.user_repo.get_by_email(email.strip().lower())
        if not user or not PWD_CTX.verify(password, user.password_hash):
            return None
        return user

    def login(self, email: str, password: str) -> schemas.LoginOut:
        """Verify credentials and return a signed token plus the profile."""
        user = self.authenticate(email, password)
        if user is None:
            raise UnauthorizedError("invalid credentials")
        return schemas.LoginOut(token=issue_token(user), user=self.to_out(user))

    def _load_self(self, caller_id: int, user_id: int) -> models.User:
        user = self.user_repo.get(user_id)
        if user is None:
            raise NotFoundError(f"User not found with id: {user_id}")
        if user.id != caller_id:
            logger.warning("user %s denied access to user %s", caller_id, user_id)
            raise ForbiddenError("not authorized to access this user")
        return user

    def get_profile(self, caller_id: int, user_id: int) -> schemas.UserOut:
        return self.to_out(self._load_self(caller_id, user_id))

    def update_profile(self, caller_id: int, user_id: int, changes: Dict[str, object]) -> schemas.UserOut:
        """Apply a partial profile update; only keys in `changes` are touched."""
        with self._transaction("email already exists"):
            user = self._load_self(caller_id, user_id)
            if "name" in changes:
                if _is_blank(changes["name"]):
                    raise ValidationError("name cannot be empty")
                user.name = changes["name"].strip()
            if "email" in changes:
                email = self._normalize_email(changes["email"])
                if email != user.email and self.user_repo.exists_by_email(email):
                    raise ConflictError(f"email already exists: {email}")
                user.email = email
            if "password" in changes:
                if _is_blank(changes["password"]):
                    raise ValidationError("password cannot be empty")
                user.password_hash = PWD_CTX.hash(changes["password"])
            self.user_repo.add(user)
            out = self.to_out(user)
        return out

    def change_password(self, caller_id: int, user_id: int, old_password: str, new_password: str) -> None:
        """Replace the password after checking the current one.

        The new password needs at least 8 characters with at least one
        letter and one digit.
        """
        with self._transaction():
            user = self._load_self(caller_id, user_id)
            if old_password is None or not PWD_CTX.verify(old_password, user.password_hash):
                raise UnauthorizedError("invalid current password")
            if new_password is None or len(new_password) < 8:
                raise ValidationError("new password must be at least 8 characters")
            if not any(c.isdigit() for c in new_password) or not any(c.isalpha() for c in new_password):
                raise ValidationError("new password must contain letters and digits")
            user.password_hash = PWD_CTX.hash(new_password)
            self.user_repo.add(user)
        logger.info("password changed for user id=%s", user_id)


class ProgramService(_Service):
    """Owner-scoped create/read/update/delete for programs."""
    def __init__(self, session: Session,
                 program_repo: Optional[repositories.ProgramRepository] = None,
                 user_repo: Optional[repositories.UserRepository] = None,
                 document_repo: Optional[repositories.DocumentRepository] = None):
        super().__init__(session)
        self.program_repo = program_repo or repositories.ProgramRepository(session)
        self.user_repo = user_repo or repositories.UserRepository(session)
        self.document_repo = document_repo or repositories.DocumentRepository(session)

    @staticmethod
    def to_out(p: models.Program) -> schemas.ProgramOut:
        return schemas.ProgramOut(
            program_id=p.id,
            user_id=p.user_id,
            university_name=p.university_name,
            field_of_study=p.field_of_study,
            focus_area=p.focus_area,
            portal=p.portal,
            website=p.website,
            deadline=p.deadline,
            status=p.status.label,
            tuition=p.tuition,
            requirements=p.requirements,
            notes=p.notes,
        )

    def _load_owned(self, owner_id: int, program_id: int) -> models.Program:
        program = self.program_repo.get(program_id)
        if program is None:
            raise NotFoundError(f"Program not found with id: {program_id}")
        if program.user_id != owner_id:
            logger.warning("user %s denied access to program %s", owner_id, program_id)
            raise ForbiddenError("not authorized to access this program")
        return program

    def create(self, owner_id: int, fields: Dict[str, object]) -> schemas.ProgramOut:
        """Create a program owned by `owner_id`.

        The owner always comes from the caller's identity; any owner key in
        `fields` is ignored.
        """
        if _is_blank(fields.get("university_name")):
            raise ValidationError("universityName must not be blank")
        with self._transaction():
            if self.user_repo.get(owner_id) is None:
                raise NotFoundError(f"User not found with id: {owner_id}")
            program = models.Program(
                user_id=owner_id,
                university_name=fields["university_name"].strip(),
                field_of_study=fields.get("field_of_study"),
                focus_area=fields.get("focus_area"),
                portal=fields.get("portal"),
                website=fields.get("website"),
                deadline=fields.get("deadline"),
                status=models.ApplicationStatus.parse(fields.get("status")),
                tuition=fields.get("tuition"),
                requirements=fields.get("requirements"),
                notes=fields.get("notes"),
            )
            self.program_repo.add(program)
            out = self.to_out(program)
        logger.info("program created id=%s owner=%s", out.program_id, owner_id)
        return out

    def list(self, owner_id: int, filters: Optional[Dict[str, object]] = None,
             page: Optional[int] = None, size: Optional[int] = None) -> Tuple[List[schemas.ProgramOut], int]:
        """Return `(programs, total)` for the owner.

        `total` counts every matching row, independent of paging.
        """
        offset, limit = _page_bounds(page, size)
        rows = self.program_repo.list_for_owner(owner_id, filters, offset=offset, limit=limit)
        total = self.program_repo.count_for_owner(owner_id, filters)
        return [self.to_out(p) for p in rows], total

    def get(self, owner_id: int, program_id: int) -> schemas.ProgramOut:
        return self.to_out(self._load_owned(owner_id, program_id))

    def update(self, owner_id: int, program_id: int, changes: Dict[str, object]) -> schemas.ProgramOut:
        """Apply a partial update.

        Only keys present in `changes` are written; a present `None`
        clears an optional field. The university name can be changed but
        never blanked, and status is parsed leniently.
        """
        with self._transaction():
            program = self._load_owned(owner_id, program_id)
            for key, value in changes.items():
                if key == "university_name":
                    if _is_blank(value):
                        raise ValidationError("universityName must not be blank")
                    program.university_name = value.strip()
                elif key == "status":
                    program.status = models.ApplicationStatus.parse(value)
                elif key in ("field_of_study", "focus_area", "portal", "website",
                             "deadline", "tuition", "requirements", "notes"):
                    setattr(program, key, value)
            self.program_repo.add(program)
            out = self.to_out(program)
        logger.info("program updated id=%s owner=%s", program_id, owner_id)
        return out

    def delete(self, owner_id: int, program_id: int) -> None:
        """Delete a program and its links; linked documents are kept."""
        with self._transaction():
            program = self._load_owned(owner_id, program_id)
            self.program_repo.delete(program)
        logger.info("program deleted id=%s owner=%s", program_id, owner_id)

    def dashboard_stats(self, owner_id: int) -> schemas.DashboardStatsOut:
        """Aggregate counts for the owner's dashboard."""
        if self.user_repo.get(owner_id) is None:
            raise NotFoundError(f"User not found with id: {owner_id}")
        counts = self.program_repo.status_counts(owner_id)
        return schemas.DashboardStatsOut(
            total_programs=sum(counts.values()),
            total_documents=self.document_repo.count_for_owner(owner_id),
            status_counts={status.label: n for status, n in counts.items()},
        )


class DocumentService(_Service):
    """Owner-scoped metadata operations for uploaded documents.

    The bytes themselves are written and removed by the storage helper in
    `utils.storage`; this service only records where they live.
    """
    def __init__(self, session: Session,
                 document_repo: Optional[repositories.DocumentRepository] = None,
                 link_repo: Optional[repositories.ProgramDocumentRepository] = None,
                 user_repo: Optional[repositories.UserRepository] = None):
        super().__init__(session)
        self.document_repo = document_repo or repositories.DocumentRepository(session)
        self.link_repo = link_repo or repositories.ProgramDocumentRepository(session)
        self.user_repo = user_repo or repositories.UserRepository(session)

    @staticmethod
    def to_out(d: models.Document) -> schemas.DocumentOut:
        return schemas.DocumentOut(
            document_id=d.id,
            user_id=d.user_id,
            file_name=d.file_name,
            file_path=d.file_path,
            doc_type=d.doc_type,
            notes=d.notes,
        )

    def _load_owned(self, owner_id: int, document_id: int) -> models.Document:
        doc = self.document_repo.get(document_id)
        if doc is None:
            raise NotFoundError(f"Document not found with id: {document_id}")
        if doc.user_id != owner_id:
            logger.warning("user %s denied access to document %s", owner_id, document_id)
            raise ForbiddenError("not authorized to access this document")
        return doc

    def create(self, owner_id: int, file_name: str, file_path: str,
               doc_type: Optional[str] = None, notes: Optional[str] = None) -> schemas.DocumentOut:
        """Record a stored file for `owner_id`."""
        if _is_blank(file_name):
            raise ValidationError("fileName must not be blank")
        if _is_blank(file_path):
            raise ValidationError("filePath must not be blank")
        with self._transaction():
            if self.user_repo.get(owner_id) is None:
                raise NotFoundError(f"User not found with id: {owner_id}")
            doc = self.document_repo.add(models.Document(
                user_id=owner_id,
                file_name=file_name.strip(),
                file_path=file_path,
                doc_type=doc_type,
                notes=notes,
            ))
            out = self.to_out(doc)
        logger.info("document created id=%s owner=%s", out.document_id, owner_id)
        return out

    def list(self, owner_id: int, doc_type: Optional[str] = None,
             page: Optional[int] = None, size: Optional[int] = None) -> Tuple[List[schemas.DocumentOut], int]:
        offset, limit = _page_bounds(page, size)
        rows = self.document_repo.list_for_owner(owner_id, doc_type, offset=offset, limit=limit)
        total = self.document_repo.count_for_owner(owner_id, doc_type)
        return [self.to_out(d) for d in rows], total

    def get(self, owner_id: int, document_id: int) -> schemas.DocumentOut:
        return self.to_out(self._load_owned(owner_id, document_id))

    def file_path_for(self, owner_id: int, document_id: int) -> str:
        """Return the stored path of an owned document, for downloads."""
        doc = self._load_owned(owner_id, document_id)
        if _is_blank(doc.file_path):
            raise NotFoundError("document has no file path")
        return doc.file_path

    def update(self, owner_id: int, document_id: int, changes: Dict[str, object]) -> schemas.DocumentOut:
        """Partially update file name, type and notes."""
        with self._transaction():
            doc = self._load_owned(owner_id, document_id)
            if "file_name" in changes:
                if _is_blank(changes["file_name"]):
                    raise ValidationError("fileName must not be blank")
                doc.file_name = changes["file_name"].strip()
            if "doc_type" in changes:
                doc.doc_type = changes["doc_type"]
            if "notes" in changes:
                doc.notes = changes["notes"]
            self.document_repo.add(doc)
            out = self.to_out(doc)
        return out

    def replace_file(self, owner_id: int, document_id: int,
                     file_name: str, file_path: str) -> Tuple[schemas.DocumentOut, str]:
        """Point a document at newly stored bytes.

        Returns the updated projection and the previous path so the caller
        can reclaim the old file once the change is committed.
        """
        if _is_blank(file_name) or _is_blank(file_path):
            raise ValidationError("replacement file is required")
        with self._transaction():
            doc = self._load_owned(owner_id, document_id)
            previous = doc.file_path
            doc.file_name = file_name.strip()
            doc.file_path = file_path
            self.document_repo.add(doc)
            out = self.to_out(doc)
        logger.info("document file replaced id=%s owner=%s", document_id, owner_id)
        return out, previous

    def delete(self, owner_id: int, document_id: int) -> schemas.DocumentOut:
        """Delete the metadata row and return what was removed.

        A document still linked to a program is refused with
        `ConflictError`; unlink it first.
        """
        with self._transaction():
            doc = self._load_owned(owner_id, document_id)
            if self.link_repo.exists_for_document(document_id):
                raise ConflictError("document linked to programs; unlink first")
            out = self.to_out(doc)
            self.document_repo.delete(doc)
        logger.info("document deleted id=%s owner=%s", document_id, owner_id)
        return out


class ProgramDocumentService(_Service):
    """Link documents to programs.

    Creating a link requires the caller to own both the program and the
    document. Listing, editing and removing links only check the program
    side: ownership of a link is always derived through its program.
    """
    def __init__(self, session: Session,
                 link_repo: Optional[repositories.ProgramDocumentRepository] = None,
                 program_repo: Optional[repositories.ProgramRepository] = None,
                 document_repo: Optional[repositories.DocumentRepository] = None):
        super().__init__(session)
        self.link_repo = link_repo or repositories.ProgramDocumentRepository(session)
        self.program_repo = program_repo or repositories.ProgramRepository(session)
        self.document_repo = document_repo or repositories.DocumentRepository(session)

    @staticmethod
    def to_out(link: models.ProgramDocument) -> schemas.ProgramDocumentOut:
        return schemas.ProgramDocumentOut(
            program_doc_id=link.id,
            program_id=link.program_id,
            document_id=link.document_id,
            usage_notes=link.usage_notes,
        )

    def _require_program(self, caller_id: int, program_id: int, action: str) -> models.Program:
        if self.program_repo.get(program_id) is None:
            raise NotFoundError(f"Program not found with id: {program_id}")
        program = self.program_repo.get_for_owner(program_id, caller_id)
        if program is None:
            logger.warning("user %s denied %s on program %s", caller_id, action, program_id)
            raise ForbiddenError(f"not authorized to {action} for this program")
        return program

    def _load_link(self, caller_id: int, program_doc_id: int, action: str) -> models.ProgramDocument:
        link = self.link_repo.get(program_doc_id)
        if link is None:
            raise NotFoundError(f"ProgramDocument not found with id: {program_doc_id}")
        # a link is owned by whoever owns its program
        if self.program_repo.get_for_owner(link.program_id, caller_id) is None:
            logger.warning("user %s denied %s on link %s", caller_id, action, program_doc_id)
            raise ForbiddenError(f"not authorized to {action} this program-document link")
        return link

    def link(self, caller_id: int, program_id: int, document_id: int,
             usage_notes: Optional[str] = None) -> schemas.ProgramDocumentOut:
        """Link `document_id` to `program_id`.

        Checks run in a fixed order: program exists, caller owns program,
        document exists, caller owns document, pair not yet linked.
        """
        duplicate = f"document {document_id} is already linked to program {program_id}"
        with self._transaction(duplicate, "program or document no longer exists"):
            self._require_program(caller_id, program_id, "link documents")
            if self.document_repo.get(document_id) is None:
                raise NotFoundError(f"Document not found with id: {document_id}")
            if self.document_repo.get_for_owner(document_id, caller_id) is None:
                logger.warning("user %s denied linking document %s", caller_id, document_id)
                raise ForbiddenError("not authorized to link this document")
            if self.link_repo.get_for_pair(program_id, document_id) is not None:
                raise ConflictError(duplicate)
            link = self.link_repo.add(models.ProgramDocument(
                program_id=program_id,
                document_id=document_id,
                usage_notes=usage_notes,
            ))
            out = self.to_out(link)
        logger.info("document %s linked to program %s as link %s", document_id, program_id, out.program_doc_id)
        return out

    def list(self, caller_id: int, program_id: int) -> List[schemas.ProgramDocumentOut]:
        """Return every link for an owned program (possibly empty)."""
        self._require_program(caller_id, program_id, "view documents")
        return [self.to_out(link) for link in self.link_repo.list_for_program(program_id)]

    def update_notes(self, caller_id: int, program_doc_id: int,
                     usage_notes: Optional[str]) -> schemas.ProgramDocumentOut:
        with self._transaction():
            link = self._load_link(caller_id, program_doc_id, "update")
            link.usage_notes = usage_notes
            self.link_repo.add(link)
            out = self.to_out(link)
        return out

    def unlink(self, caller_id: int, program_doc_id: int) -> None:
        """Remove one link row; the program and document are untouched.

        Only the program side is checked, so a caller may remove a link
        from their program even if the document is no longer theirs.
        """
        with self._transaction():
            link = self._load_link(caller_id, program_doc_id, "delete")
            self.link_repo.delete(link)
        logger.info("link %s removed by user %s", program_doc_id, caller_id)
