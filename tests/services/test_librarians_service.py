from __future__ import annotations

import pytest

from lms.db.engine import init_engine_once, reset_for_tests
from lms.services import auth_service, librarians_service
from lms.utils import constants


@pytest.fixture(autouse=True)
def in_memory_db(monkeypatch):
    reset_for_tests(drop=True)
    monkeypatch.setenv("LMS_DB_PATH", ":memory:")
    monkeypatch.delenv("LMS_DATABASE_URL", raising=False)
    init_engine_once()
    yield
    reset_for_tests(drop=True)


def _form(**overrides):
    data = {
        "employee_id": "EMP001",
        "full_name": "Mary Shelley",
        "email": "mary@library.test",
        "phone": "555-0101",
        "password": "frankenstein",
        "confirm_password": "frankenstein",
        "can_approve_requests": True,
    }
    data.update(overrides)
    return data


def test_register_uses_employee_id_as_login():
    user = librarians_service.register_librarian(_form())
    assert user.role == constants.ROLE_LIBRARIAN
    assert user.status == constants.USER_ACTIVE
    assert user.username == "EMP001"
    assert user.permissions() == {
        constants.PERM_APPROVE_REQUESTS: True,
        constants.PERM_ISSUE_RETURNS: False,
        constants.PERM_REVOKE_MEMBERSHIP: False,
    }
    assert auth_service.authenticate("EMP001", "frankenstein", "librarian").id == user.id


def test_register_rejects_bad_fields_and_duplicates():
    with pytest.raises(librarians_service.LibrarianValidationError) as excinfo:
        librarians_service.register_librarian(_form(employee_id="x", phone="call me", password="short"))
    assert {"employee_id", "phone", "password"} <= set(excinfo.value.fields)

    librarians_service.register_librarian(_form())
    with pytest.raises(librarians_service.LibrarianValidationError) as excinfo:
        librarians_service.register_librarian(_form(email="other@library.test"))
    assert excinfo.value.code == "employee_id_exists"
    with pytest.raises(librarians_service.LibrarianValidationError) as excinfo:
        librarians_service.register_librarian(_form(employee_id="EMP002"))
    assert excinfo.value.code == "email_exists"


def test_update_keeps_unmentioned_permissions_and_changes_password():
    user = librarians_service.register_librarian(_form())
    updated = librarians_service.update_librarian(
        user.id,
        {"phone": "555-0199", "permissions": {"can_issue_returns": True},
         "password": "newsecret1", "confirm_password": "newsecret1"},
    )
    assert updated.phone == "555-0199"
    assert updated.can_approve_requests is True
    assert updated.can_issue_returns is True
    assert auth_service.authenticate("EMP001", "newsecret1", "LIBRARIAN").id == user.id

    with pytest.raises(librarians_service.LibrarianValidationError):
        librarians_service.update_librarian(user.id, {"password": "newsecret2", "confirm_password": "other"})


def test_status_transitions_block_login():
    user = librarians_service.register_librarian(_form())
    librarians_service.deactivate_librarian(user.id)
    with pytest.raises(librarians_service.LibrarianStateError) as excinfo:
        librarians_service.deactivate_librarian(user.id)
    assert excinfo.value.code == "librarian_already_inactive"
    with pytest.raises(auth_service.InvalidCredentialsError):
        auth_service.authenticate("EMP001", "frankenstein", "LIBRARIAN")

    reactivated = librarians_service.set_librarian_status(user.id, True)
    assert reactivated.status == constants.USER_ACTIVE


def test_lookup_and_listing():
    first = librarians_service.register_librarian(_form())
    librarians_service.register_librarian(_form(employee_id="EMP002", email="percy@library.test",
                                                full_name="Percy Shelley"))
    assert len(librarians_service.list_librarians()) == 2
    assert [u.username for u in librarians_service.list_librarians("percy")] == ["EMP002"]
    assert librarians_service.get_librarian(first.id).email == "mary@library.test"
    with pytest.raises(librarians_service.LibrarianNotFoundError):
        librarians_service.get_librarian(9999)


def test_update_rolls_back_fields_when_password_write_fails(monkeypatch):
    user = librarians_service.register_librarian(_form())

    def broken_update_password(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(librarians_service.users_repo, "update_password", broken_update_password)
    with pytest.raises(RuntimeError):
        librarians_service.update_librarian(
            user.id,
            {"full_name": "Percy Shelley", "password": "prometheus", "confirm_password": "prometheus"},
        )
    assert librarians_service.get_librarian(user.id).full_name == "Mary Shelley"
