from biblioteca.permissions import (
    ADMIN,
    DISABLE_USERS,
    MODIFY_BOOKS,
    MODIFY_USERS,
    USER,
    Identity,
    can_change_roles,
    can_disable_user,
    can_modify_book_fields,
    can_update_user,
    can_view_user_history,
    has_any_role,
)

reader = Identity.of(1, [USER])
admin = Identity.of(2, [ADMIN])


def test_has_any_role():
    assert has_any_role(reader, USER, ADMIN)
    assert not has_any_role(reader, ADMIN)
    assert not has_any_role(Identity.of(3, []), USER)


def test_book_field_rules():
    assert can_modify_book_fields(admin, ["stock", "enabled"])
    assert not can_modify_book_fields(admin, ["stock", "title"])
    assert can_modify_book_fields(Identity.of(2, [ADMIN, MODIFY_BOOKS]), ["title", "published_at"])


def test_user_rules():
    assert can_update_user(reader, 1)
    assert not can_update_user(reader, 2)
    assert can_update_user(Identity.of(5, [MODIFY_USERS]), 1)

    assert not can_change_roles(admin)
    assert can_change_roles(Identity.of(5, [MODIFY_USERS]))

    assert can_disable_user(reader, 1)
    assert not can_disable_user(admin, 1)
    assert can_disable_user(Identity.of(5, [DISABLE_USERS]), 1)

    assert can_view_user_history(reader, 1)
    assert not can_view_user_history(reader, 2)
    assert can_view_user_history(admin, 1)
