import threading

import pytest
from sqlalchemy import func, insert, select
from sqlalchemy.orm import Session

from database import Base, build_engine
from models import User
from schemas import ExternalIdentity
from services import UserConflict, UserService, placeholder_email


def count_users(session: Session) -> int:
    return session.execute(select(func.count(User.id))).scalar_one()


def test_sync_creates_user_once(session) -> None:
    identity = ExternalIdentity(
        id="user_abc", email="Jane@Example.com", first_name="Jane", last_name="Doe"
    )
    first = UserService(session).sync(identity)
    second = UserService(session).sync(identity)

    assert first.id == second.id == "user_abc"
    assert first.email == "jane@example.com"
    assert first.name == "Jane Doe"
    assert count_users(session) == 1


def test_sync_does_not_reconcile_existing_fields(session) -> None:
    UserService(session).sync(
        ExternalIdentity(id="user_abc", email="jane@example.com", name="Jane")
    )
    user = UserService(session).sync(
        ExternalIdentity(id="user_abc", email="other@example.com", name="Janet")
    )
    assert user.name == "Jane"
    assert user.email == "jane@example.com"


def test_sync_without_email_uses_placeholder(session) -> None:
    user = UserService(session).sync(ExternalIdentity(id="user_noemail"))
    assert user.email == placeholder_email("user_noemail")
    assert user.name is None


def test_sync_raises_when_email_belongs_to_another_user(session) -> None:
    UserService(session).sync(ExternalIdentity(id="a", email="shared@example.com"))
    with pytest.raises(UserConflict):
        UserService(session).sync(
            ExternalIdentity(id="b", email="shared@example.com")
        )
    assert count_users(session) == 1


def test_losing_insert_is_treated_as_success(session, monkeypatch) -> None:
    # dialects without ON CONFLICT fall back to a plain insert
    monkeypatch.setattr(
        UserService,
        "_insert_ignoring_duplicates",
        lambda self, values: insert(User).values(**values),
    )
    identity = ExternalIdentity(id="user_race", email="race@example.com")

    UserService(session).sync(identity)
    user = UserService(session).sync(identity)

    assert user.id == "user_race"
    assert count_users(session) == 1


def test_concurrent_sync_creates_single_row(tmp_path) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'sync.db'}", timeout=30)
    Base.metadata.create_all(engine)

    identity = ExternalIdentity(id="user_new", email="new@example.com")
    workers = 8
    barrier = threading.Barrier(workers, timeout=30)
    errors: list[BaseException] = []
    synced: list[str] = []

    def worker() -> None:
        try:
            with Session(engine) as s:
                barrier.wait()
                synced.append(UserService(s).sync(identity).id)
        except BaseException as exc:  # collected and asserted on below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert synced == ["user_new"] * workers
    with Session(engine) as s:
        assert count_users(s) == 1
    engine.dispose()


def test_placeholder_email_fits_column_for_long_ids(session) -> None:
    long_id = "user_" + "x" * 250
    user = UserService(session).sync(ExternalIdentity(id=long_id))

    assert len(user.email) <= 255
    assert user.email == placeholder_email(long_id)
    assert placeholder_email(long_id) != placeholder_email(long_id + "y")
    assert placeholder_email("short") == "short@users.noreply.invalid"
