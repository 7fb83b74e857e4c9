import os

os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["ADMIN_API_TOKEN"] = ""
os.environ["META_WA_ACCESS_TOKEN"] = ""
os.environ["META_WA_PHONE_NUMBER_ID"] = ""
os.environ["META_WA_VERIFY_TOKEN"] = "verify-me"

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from luixa.core.database import Base  # noqa: E402
import luixa.models  # noqa: E402,F401
from tests.fixtures_data import seed_catalog  # noqa: E402


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def catalog(db):
    return seed_catalog(db)
