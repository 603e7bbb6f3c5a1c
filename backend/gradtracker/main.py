"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the graduate application
tracker. Controllers are intentionally thin: they read the caller from
the bearer token, delegate to a service, and return its projection.
Service errors are turned into responses by one exception handler.

Endpoints implemented:
- POST /api/users/register, POST /api/users/login
- GET /api/users/me, GET|PUT /api/users/{id}, POST /api/users/{id}/password
- POST|GET /api/programs, GET|PUT|DELETE /api/programs/{programId}
- POST|GET /api/programs/{programId}/documents
- PUT|DELETE /api/program-docs/{programDocId}
- POST|GET /api/documents, GET|PUT|DELETE /api/documents/{documentId}
- POST /api/documents/{documentId}/replace, GET /api/documents/{documentId}/download
- GET /api/dashboard/stats
- GET /health
"""

from datetime import date, datetime, timezone
from typing import Annotated, List, Optional
import json
import logging
import os
import time
import uuid

from fastapi import Depends, FastAPI, File, Form, Path, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from sqlmodel import Session

from . import models, schemas, services
from .auth import get_current_user
from .config import settings
from .database import create_db_and_tables, get_session
from .errors import NotFoundError, ServiceError
from .utils.storage import DocumentStorage
from .utils.uploads import check_upload

app = FastAPI(title="Graduate Application Tracker API")
logger = logging.getLogger("gradtracker.api")
if not logging.getLogger().handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
storage = DocumentStorage(settings.UPLOAD_DIR)

# path ids outside the stored integer range are rejected with 400
ResourceId = Annotated[int, Path(ge=1, le=schemas.MAX_ID)]

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


def _error_body(status_code: int, message: str, **extra) -> dict:
    body = {
        "status": status_code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    body.update(extra)
    return body


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.status_code, exc.message))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    message = "; ".join(f"{e['field']}: {e['message']}" for e in errors) or "Validation failed"
    return JSONResponse(status_code=400, content=_error_body(400, message, errors=errors))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    # details stay in the log; the caller only learns that something failed
    logger.error("unhandled error on %s %s: %r", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content=_error_body(500, "Internal server error"))


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/api"):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
    return response


def _read_upload(file: UploadFile) -> bytes:
    payload = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    check_upload(payload, file.filename, settings.MAX_UPLOAD_BYTES)
    return payload


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}


# --- users -----------------------------------------------------------------

@app.post('/api/users/register', response_model=schemas.UserOut, status_code=201)
def register(payload: schemas.RegisterIn, db: Session = Depends(get_session)):
    """Register a new user; a taken email returns 409."""
    return services.AuthService(db).register(payload.name, payload.email, payload.password)


@app.post('/api/users/login', response_model=schemas.LoginOut)
def login(payload: schemas.LoginIn, db: Session = Depends(get_session)):
    """Authenticate a user and return a signed JWT plus the profile.

    The token carries `user_id` and is signed with the configured secret.
    """
    return services.AuthService(db).login(payload.email, payload.password)


@app.get('/api/users/me', response_model=schemas.UserOut)
def me(user: models.User = Depends(get_current_user)):
    return services.AuthService.to_out(user)


@app.get('/api/users/{user_id}', response_model=schemas.UserOut)
def get_user(user_id: ResourceId, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.AuthService(db).get_profile(user.id, user_id)


@app.put('/api/users/{user_id}', response_model=schemas.UserOut)
def update_user(user_id: ResourceId, payload: schemas.UserUpdateIn, db: Session = Depends(get_session),
                user: models.User = Depends(get_current_user)):
    """Partially update the caller's own profile."""
    return services.AuthService(db).update_profile(user.id, user_id, payload.model_dump(exclude_unset=True))


@app.post('/api/users/{user_id}/password', status_code=204)
def change_password(user_id: ResourceId, payload: schemas.PasswordChangeIn, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    services.AuthService(db).change_password(user.id, user_id, payload.old_password, payload.new_password)
    return Response(status_code=204)


# --- programs --------------------------------------------------------------

@app.post('/api/programs', response_model=schemas.ProgramOut, status_code=201)
def create_program(payload: schemas.ProgramCreate, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    """Create a program owned by the authenticated user."""
    return services.ProgramService(db).create(user.id, payload.model_dump())


@app.get('/api/programs', response_model=List[schemas.ProgramOut])
def list_programs(
    response: Response,
    university_name: Optional[str] = Query(None, alias="universityName"),
    field_of_study: Optional[str] = Query(None, alias="fieldOfStudy"),
    focus_area: Optional[str] = Query(None, alias="focusArea"),
    portal: Optional[str] = None,
    website: Optional[str] = None,
    tuition: Optional[str] = None,
    requirements: Optional[str] = None,
    status: Optional[str] = None,
    deadline: Optional[date] = None,
    page: Optional[int] = None,
    size: Optional[int] = None,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """List the caller's programs.

    Text filters are case-insensitive "contains"; `status` is parsed
    leniently and `deadline` is an exact date. `page` is 0-based. The
    unpaged total is returned in `X-Total-Count`.
    """
    filters = {
        "university_name": university_name,
        "field_of_study": field_of_study,
        "focus_area": focus_area,
        "portal": portal,
        "website": website,
        "tuition": tuition,
        "requirements": requirements,
        "status": status,
        "deadline": deadline,
    }
    items, total = services.ProgramService(db).list(user.id, filters, page=page, size=size)
    response.headers["X-Total-Count"] = str(total)
    return items


@app.get('/api/programs/{program_id}', response_model=schemas.ProgramOut)
def get_program(program_id: ResourceId, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.ProgramService(db).get(user.id, program_id)


@app.put('/api/programs/{program_id}', response_model=schemas.ProgramOut)
def update_program(program_id: ResourceId, payload: schemas.ProgramUpdate, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    """Partially update a program; omitted fields keep their values."""
    return services.ProgramService(db).update(user.id, program_id, payload.model_dump(exclude_unset=True))


@app.delete('/api/programs/{program_id}', status_code=204)
def delete_program(program_id: ResourceId, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.ProgramService(db).delete(user.id, program_id)
    return Response(status_code=204)


# --- program documents -----------------------------------------------------

@app.post('/api/programs/{program_id}/documents', response_model=schemas.ProgramDocumentOut, status_code=201)
def link_document(program_id: ResourceId, payload: schemas.ProgramDocumentCreate, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    """Link one of the caller's documents to one of the caller's programs."""
    return services.ProgramDocumentService(db).link(user.id, program_id, payload.document_id, payload.usage_notes)


@app.get('/api/programs/{program_id}/documents', response_model=List[schemas.ProgramDocumentOut])
def list_program_documents(program_id: ResourceId, db: Session = Depends(get_session),
                           user: models.User = Depends(get_current_user)):
    return services.ProgramDocumentService(db).list(user.id, program_id)


@app.put('/api/program-docs/{program_doc_id}', response_model=schemas.ProgramDocumentOut)
def update_program_document(program_doc_id: ResourceId, payload: schemas.ProgramDocumentUpdate,
                            db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.ProgramDocumentService(db).update_notes(user.id, program_doc_id, payload.usage_notes)


@app.delete('/api/program-docs/{program_doc_id}', status_code=204)
def unlink_document(program_doc_id: ResourceId, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    services.ProgramDocumentService(db).unlink(user.id, program_doc_id)
    return Response(status_code=204)


# --- documents -------------------------------------------------------------

@app.post('/api/documents', response_model=schemas.DocumentOut, status_code=201)
def upload_document(
    file: UploadFile = File(...),
    doc_type: str = Form(..., alias="docType"),
    notes: Optional[str] = Form(default=None),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Upload a file and record it as a document of the caller.

    Accepted types: pdf, docx, doc, txt, jpg, jpeg, png. The stored path
    is chosen by the server. If recording the metadata fails the stored
    bytes are removed again.
    """
    payload = _read_upload(file)
    path = storage.save(user.id, file.filename, payload)
    try:
        return services.DocumentService(db).create(user.id, file.filename, path, doc_type, notes)
    except Exception:
        storage.discard(path)
        raise


@app.get('/api/documents', response_model=List[schemas.DocumentOut])
def list_documents(
    response: Response,
    doc_type: Optional[str] = Query(None, alias="docType"),
    page: Optional[int] = None,
    size: Optional[int] = None,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    items, total = services.DocumentService(db).list(user.id, doc_type, page=page, size=size)
    response.headers["X-Total-Count"] = str(total)
    return items


@app.get('/api/documents/{document_id}', response_model=schemas.DocumentOut)
def get_document(document_id: ResourceId, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.DocumentService(db).get(user.id, document_id)


@app.get('/api/documents/{document_id}/download')
def download_document(document_id: ResourceId, db: Session = Depends(get_session),
                      user: models.User = Depends(get_current_user)):
    """Stream the stored bytes of an owned document."""
    svc = services.DocumentService(db)
    doc = svc.get(user.id, document_id)
    try:
        path = storage.resolve(svc.file_path_for(user.id, document_id))
    except FileNotFoundError:
        raise NotFoundError("stored file not found")
    if not path.is_file():
        raise NotFoundError("stored file not found")
    return FileResponse(path, filename=doc.file_name)


@app.put('/api/documents/{document_id}', response_model=schemas.DocumentOut)
def update_document(document_id: ResourceId, payload: schemas.DocumentUpdate, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    return services.DocumentService(db).update(user.id, document_id, payload.model_dump(exclude_unset=True))


@app.post('/api/documents/{document_id}/replace', response_model=schemas.DocumentOut)
def replace_document_file(document_id: ResourceId, file: UploadFile = File(...), db: Session = Depends(get_session),
                          user: models.User = Depends(get_current_user)):
    """Swap the stored file of a document, keeping its id and links."""
    payload = _read_upload(file)
    path = storage.save(user.id, file.filename, payload)
    try:
        out, previous = services.DocumentService(db).replace_file(user.id, document_id, file.filename, path)
    except Exception:
        storage.discard(path)
        raise
    storage.discard(previous)
    return out


@app.delete('/api/documents/{document_id}', status_code=204)
def delete_document(document_id: ResourceId, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    """Delete a document's metadata, then reclaim its stored bytes."""
    removed = services.DocumentService(db).delete(user.id, document_id)
    storage.discard(removed.file_path)
    return Response(status_code=204)


# --- dashboard -------------------------------------------------------------

@app.get('/api/dashboard/stats', response_model=schemas.DashboardStatsOut)
def dashboard_stats(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Program and document totals plus a per-status breakdown."""
    return services.ProgramService(db).dashboard_stats(user.id)
