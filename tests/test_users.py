import pytest

import users
from errors import InvalidRequestError, NotFoundError


def test_first_sign_in_creates_a_plain_user(db):
    created = users.create_user_if_not_exists(db, "uid-1", {
        "email": "  Rosa@Example.COM ",
        "first_name": " Rosa ",
        "phone": "+51 (987) 654-321",
        "role": "admin",
    })
    assert created["id"] == "uid-1"
    assert created["email"] == "rosa@example.com"
    assert created["first_name"] == "Rosa"
    assert created["phone"] == "51987654321"
    assert created["role"] == "user"
    assert users.get_user_by_email(db, "ROSA@example.com")["id"] == "uid-1"


def test_existing_profile_is_returned_untouched(db, user):
    again = users.create_user_if_not_exists(db, user["id"], {"email": "changed@example.com"})
    assert again["email"] == "ana@example.com"


@pytest.mark.parametrize("email", ["", "nope", "a@b", "a b@c.com"])
def test_invalid_email_is_refused(db, email):
    with pytest.raises(InvalidRequestError):
        users.create_user_if_not_exists(db, "uid-2", {"email": email})


def test_profile_update_keeps_role_unless_admin(db, user):
    updated = users.update_user_profile(db, user["id"], {"first_name": "Anita", "phone": "999-888", "role": "admin"})
    assert updated["first_name"] == "Anita"
    assert updated["phone"] == "999888"
    assert updated["role"] == "user"

    updated = users.update_user_profile(db, user["id"], {"is_active": False}, allow_admin_fields=True)
    assert updated["is_active"] is False


def test_profile_update_validates_email(db, user):
    with pytest.raises(InvalidRequestError):
        users.update_user_profile(db, user["id"], {"email": "broken"})
    with pytest.raises(NotFoundError):
        users.update_user_profile(db, "ghost", {"first_name": "x"})


def test_set_user_role(db, user):
    assert users.set_user_role(db, user["id"], "admin")["role"] == "admin"
    with pytest.raises(InvalidRequestError):
        users.set_user_role(db, user["id"], "root")
    with pytest.raises(NotFoundError):
        users.set_user_role(db, "ghost", "admin")


def test_list_users(db, admin, user):
    assert {u["email"] for u in users.list_users(db)} == {"admin@example.com", "ana@example.com"}
