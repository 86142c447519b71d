from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from biblioteca import catalog, membership, models, queries, reservations
from biblioteca.availability import is_available
from biblioteca.errors import ErrorKind


def _reserve(db, book, user, **kwargs):
    ref, err = reservations.reserve_book(db, book_id=book.id, user_id=user.id, **kwargs)
    assert err is None, err
    return ref


def _return(db, book, user):
    ref, err = reservations.return_book(db, book_id=book.id, user_id=user.id)
    assert err is None, err
    return ref


def test_reserve_writes_both_sides_with_the_same_timestamp(db, make_book, make_user):
    book = make_book()
    user = make_user(name="Ana")

    ref = _reserve(db, book, user)

    assert ref["book_id"] == book.id
    [book_entry] = book.reservations
    [user_entry] = user.reservations
    assert ref["reservation_id"] == book_entry.id
    assert book_entry.holder_id == user.id
    assert book_entry.holder_name == "Ana"
    assert book_entry.returned_at is None
    assert user_entry.book_id == book.id
    assert user_entry.returned_at is None
    assert user_entry.reserved_at == book_entry.reserved_at


def test_reserve_makes_book_unavailable_and_keeps_stock(db, make_book, make_user):
    book = make_book(stock=1)
    _reserve(db, book, make_user())

    db.expire_all()
    book, _ = catalog.get_book(db, book.id)
    assert is_available(book) is False
    assert book.stock == 1


def test_reserve_then_return_closes_entry_and_restores_availability(db, make_book, make_user):
    book = make_book()
    user = make_user()
    reserved = _reserve(db, book, user)

    returned = _return(db, book, user)

    assert returned == {"book_id": book.id, "reservation_id": reserved["reservation_id"]}
    assert is_available(book) is True
    assert book.reservations[0].returned_at is not None
    assert user.reservations[0].returned_at == book.reservations[0].returned_at


def test_el_quijote_scenario(db, make_user):
    book, err = catalog.create_book(
        db, title="El Quijote", author="Cervantes", publisher="X", published_at="1605-01-01", stock=1
    )
    assert err is None
    user_a = make_user(name="A")

    _reserve(db, book, user_a)
    assert is_available(book) is False
    _return(db, book, user_a)
    assert is_available(book) is True

    history, err = catalog.book_history(db, book.id)
    assert err is None
    assert len(history) == 1
    assert history[0]["returned_at"] is not None


def test_return_closes_most_recent_open_entry_first(db, make_book, make_user):
    book = make_book()
    user = make_user()
    first = _reserve(db, book, user)
    second = _reserve(db, book, user)

    ref = _return(db, book, user)
    assert ref["reservation_id"] == second["reservation_id"]
    older, newer = book.reservations
    assert older.returned_at is None
    assert newer.returned_at is not None

    ref = _return(db, book, user)
    assert ref["reservation_id"] == first["reservation_id"]
    assert older.returned_at is not None
    assert all(e.returned_at is not None for e in user.reservations)


def test_return_never_reopens_or_rewrites_a_closed_entry(db, make_book, make_user):
    book = make_book()
    user = make_user()
    _reserve(db, book, user)
    _return(db, book, user)
    closed_at = book.reservations[0].returned_at

    ref = _return(db, book, user)

    assert ref == {"book_id": book.id, "reservation_id": None}
    assert book.reservations[0].returned_at == closed_at
    assert user.reservations[0].returned_at == closed_at


def test_return_without_any_reservation_is_a_successful_no_op(db, make_book, make_user):
    book = make_book()
    other = make_user(name="Otro")
    user = make_user(name="Ana")
    _reserve(db, book, other)

    ref = _return(db, book, user)

    assert ref["reservation_id"] is None
    assert book.reservations[0].returned_at is None
    assert book.reservations[0].holder_id == other.id
    assert user.reservations == []


def test_return_matches_legacy_entry_by_name_and_backfills_holder(db, make_book, make_user):
    book = make_book()
    user = make_user(name="Ana")
    book.reservations.append(models.BookReservation(holder_name="Ana", reserved_at=datetime(2024, 1, 1)))
    db.commit()

    _return(db, book, user)

    [entry] = book.reservations
    assert entry.returned_at is not None
    assert entry.holder_id == user.id
    assert entry.holder_name == "Ana"


def test_return_backfills_missing_holder_name(db, make_book, make_user):
    book = make_book()
    user = make_user(name="Ana")
    book.reservations.append(models.BookReservation(holder_id=user.id, reserved_at=datetime(2024, 1, 1)))
    db.commit()

    _return(db, book, user)

    assert book.reservations[0].holder_name == "Ana"


def test_return_by_a_namesake_closes_the_open_entry_with_that_name(db, make_book, make_user):
    book = make_book()
    ana_1 = make_user(name="Ana")
    ana_2 = make_user(name="Ana")
    _reserve(db, book, ana_1)

    ref = _return(db, book, ana_2)

    [entry] = book.reservations
    assert ref["reservation_id"] == entry.id
    assert entry.returned_at is not None
    # el titular no se reescribe; el historial de ana_1 sigue abierto
    assert entry.holder_id == ana_1.id
    assert ana_1.reservations[0].returned_at is None
    assert ana_2.reservations == []


def test_holder_name_is_a_snapshot(db, make_book, make_user, identity_for):
    book = make_book()
    user = make_user(name="Ana")
    _reserve(db, book, user)

    membership.update_user(db, identity_for(user), user.id, {"name": "Ana María"})
    _return(db, book, user)

    assert book.reservations[0].holder_name == "Ana"
    assert book.reservations[0].returned_at is not None


def test_missing_or_disabled_book_is_not_found(db, make_book, make_user):
    user = make_user()
    _, err = reservations.reserve_book(db, book_id=9999, user_id=user.id)
    assert err.kind == ErrorKind.NOT_FOUND

    book = make_book()
    catalog.disable_book(db, book.id)
    for op in (reservations.reserve_book, reservations.return_book):
        result, err = op(db, book_id=book.id, user_id=user.id)
        assert result is None
        assert err.kind == ErrorKind.NOT_FOUND
        assert err.message == "Libro no encontrado"
    assert book.reservations == []


def test_missing_or_disabled_user_is_not_found(db, make_book, make_user, identity_for):
    book = make_book()
    _, err = reservations.reserve_book(db, book_id=book.id, user_id=9999)
    assert err.kind == ErrorKind.NOT_FOUND

    user = make_user()
    membership.disable_user(db, identity_for(user), user.id)
    for op in (reservations.reserve_book, reservations.return_book):
        _, err = op(db, book_id=book.id, user_id=user.id)
        assert err.kind == ErrorKind.NOT_FOUND
        assert err.message == "Usuario no encontrado"
    assert book.reservations == []


def test_two_users_can_hold_the_same_book(db, make_book, make_user):
    book = make_book()
    other_book = make_book(title="Otro libro")
    _reserve(db, book, make_user())
    _reserve(db, book, make_user())

    assert [e.returned_at for e in book.reservations] == [None, None]

    reserved, _ = queries.list_books(db, queries.BookFilters(availability="reserved"))
    available, _ = queries.list_books(db, queries.BookFilters(availability="available"))
    assert [item["id"] for item in reserved["data"]] == [book.id]
    assert [item["id"] for item in available["data"]] == [other_book.id]


def test_single_holder_mode_rejects_reserved_book(db, make_book, make_user):
    book = make_book()
    _reserve(db, book, make_user(), single_holder=True)

    result, err = reservations.reserve_book(db, book_id=book.id, user_id=make_user().id, single_holder=True)

    assert result is None
    assert err.kind == ErrorKind.CONFLICT
    assert len(book.reservations) == 1


def test_failure_after_book_save_leaves_book_side_only(db, make_book, make_user, monkeypatch):
    book = make_book()
    user = make_user()
    real_commit = db.commit
    calls = {"n": 0}

    def flaky_commit():
        calls["n"] += 1
        if calls["n"] == 2:
            raise OperationalError("INSERT INTO user_reservations", {}, Exception("disk I/O error"))
        real_commit()

    monkeypatch.setattr(db, "commit", flaky_commit)

    result, err = reservations.reserve_book(db, book_id=book.id, user_id=user.id)

    assert result is None
    assert err.kind == ErrorKind.INTERNAL
    assert err.message == "Error interno"
    assert len(db.scalars(select(models.BookReservation)).all()) == 1
    assert db.scalars(select(models.UserReservation)).all() == []
