import pytest
from sqlalchemy import text

from gradtracker import models, repositories, services
from gradtracker.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError


def _program(session, owner_id, name="MIT", **fields):
    fields["university_name"] = name
    return services.ProgramService(session).create(owner_id, fields).program_id


def _document(session, owner_id, name="resume.pdf"):
    return services.DocumentService(session).create(owner_id, name, f"/srv/uploads/{owner_id}/{name}", "resume").document_id


def test_page_bounds():
    assert services._page_bounds(None, None) == (None, None)
    assert services._page_bounds(0, None) == (0, services.DEFAULT_PAGE_SIZE)
    assert services._page_bounds(2, 10) == (20, 10)
    with pytest.raises(ValidationError):
        services._page_bounds(-1, 10)
    with pytest.raises(ValidationError):
        services._page_bounds(0, 0)
    with pytest.raises(ValidationError):
        services._page_bounds(0, services.MAX_PAGE_SIZE + 1)


def test_create_ignores_owner_in_fields(session, make_account):
    alice = make_account("Alice")
    bob = make_account("Bob")
    out = services.ProgramService(session).create(alice, {"university_name": "MIT", "user_id": bob})
    assert out.user_id == alice
    assert out.status == "Other"


def test_create_for_unknown_owner_is_not_found(session):
    with pytest.raises(NotFoundError):
        services.ProgramService(session).create(424242, {"university_name": "MIT"})


def test_unique_pair_enforced_by_store(session, make_account, monkeypatch):
    alice = make_account()
    program_id = _program(session, alice)
    document_id = _document(session, alice)
    svc = services.ProgramDocumentService(session)
    svc.link(alice, program_id, document_id)

    # simulate a concurrent insert that slipped past the pre-check
    monkeypatch.setattr(svc.link_repo, "get_for_pair", lambda *_: None)
    with pytest.raises(ConflictError, match="already linked"):
        svc.link(alice, program_id, document_id, "racing")

    links = repositories.ProgramDocumentRepository(session).list_for_program(program_id)
    assert len(links) == 1
    assert links[0].usage_notes is None


def test_link_to_vanished_document_reports_missing_row(session, make_account, monkeypatch):
    alice = make_account()
    program_id = _program(session, alice)
    document_id = _document(session, alice)
    svc = services.ProgramDocumentService(session)
    lookup = svc.document_repo.get_for_owner

    # the document disappears between the ownership check and the insert
    def lookup_then_delete(doc_id, owner_id):
        found = lookup(doc_id, owner_id)
        session.execute(text("DELETE FROM documents WHERE id = :i"), {"i": doc_id})
        return found

    monkeypatch.setattr(svc.document_repo, "get_for_owner", lookup_then_delete)
    with pytest.raises(ConflictError) as excinfo:
        svc.link(alice, program_id, document_id)
    assert excinfo.value.message == "program or document no longer exists"
    assert "already linked" not in excinfo.value.message

    assert session.get(models.Document, document_id) is not None
    assert svc.list(alice, program_id) == []


def test_failed_update_rolls_back(session, make_account):
    alice = make_account()
    program_id = _program(session, alice, notes="keep me")
    svc = services.ProgramService(session)
    with pytest.raises(ValidationError):
        svc.update(alice, program_id, {"notes": "changed", "university_name": "   "})
    assert svc.get(alice, program_id).notes == "keep me"


def test_forbidden_link_persists_nothing(session, make_account):
    alice = make_account("Alice")
    bob = make_account("Bob")
    program_id = _program(session, alice)
    bob_doc = _document(session, bob)
    svc = services.ProgramDocumentService(session)
    with pytest.raises(ForbiddenError):
        svc.link(alice, program_id, bob_doc)
    assert svc.list(alice, program_id) == []


def test_link_checks_program_before_document(session, make_account):
    alice = make_account("Alice")
    bob = make_account("Bob")
    bob_program = _program(session, bob)
    svc = services.ProgramDocumentService(session)
    # the document does not exist, but the foreign program is reported first
    with pytest.raises(ForbiddenError):
        svc.link(alice, bob_program, 999999)


def test_unlink_only_checks_program_owner(session, make_account):
    alice = make_account("Alice")
    bob = make_account("Bob")
    program_id = _program(session, alice)
    document_id = _document(session, alice)
    svc = services.ProgramDocumentService(session)
    link = svc.link(alice, program_id, document_id)

    doc = session.get(models.Document, document_id)
    doc.user_id = bob
    session.add(doc)
    session.commit()

    svc.unlink(alice, link.program_doc_id)
    assert svc.list(alice, program_id) == []
    assert session.get(models.Document, document_id) is not None


def test_document_delete_blocked_while_linked(session, make_account):
    alice = make_account()
    program_id = _program(session, alice)
    document_id = _document(session, alice)
    services.ProgramDocumentService(session).link(alice, program_id, document_id)
    with pytest.raises(ConflictError):
        services.DocumentService(session).delete(alice, document_id)
    assert session.get(models.Document, document_id) is not None


def test_replace_file_returns_previous_path(session, make_account):
    alice = make_account()
    document_id = _document(session, alice, "old.pdf")
    svc = services.DocumentService(session)
    out, previous = svc.replace_file(alice, document_id, "new.pdf", "/srv/uploads/new.pdf")
    assert previous.endswith("old.pdf")
    assert out.file_name == "new.pdf"
    assert svc.file_path_for(alice, document_id) == "/srv/uploads/new.pdf"


def test_dashboard_stats(session, make_account):
    alice = make_account()
    _program(session, alice, "MIT", status="Applied")
    _program(session, alice, "CMU", status="applied")
    _program(session, alice, "ETH", status="Rejected")
    _document(session, alice)
    stats = services.ProgramService(session).dashboard_stats(alice)
    assert stats.total_programs == 3
    assert stats.total_documents == 1
    assert stats.status_counts == {"Applied": 2, "Rejected": 1}
