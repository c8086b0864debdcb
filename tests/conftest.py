import pytest
from sqlalchemy.orm import Session

from database import Base, build_engine


@pytest.fixture
def engine():
    eng = build_engine("sqlite://")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session
