import pytest
from sqlalchemy.orm import sessionmaker

from trimqueue import models  # noqa: F401
from trimqueue.database import Base, build_engine

from .helpers import RecordingSender, seed_shop


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'trimqueue-test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def seed(db):
    return seed_shop(db)


@pytest.fixture
def sender():
    return RecordingSender()
