import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lingoclass.dependencies import get_db
from lingoclass.extensions import Base
from lingoclass.main import app
from lingoclass.models import Enrollment, RoleName
from lingoclass.security import issue_token
from lingoclass.services import users

DATABASE_URL = "sqlite://"
engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture(name="session")
def session_fixture():
    Base.metadata.create_all(engine)
    session = TestingSession()
    yield session
    session.close()
    Base.metadata.drop_all(engine)


@pytest.fixture(name="other_session")
def other_session_fixture(session):
    """A second session on the same database, standing in for a concurrent request."""
    other = TestingSession()
    yield other
    other.close()


@pytest.fixture(name="client")
def client_fixture(session):
    def get_db_override():
        yield session

    app.dependency_overrides[get_db] = get_db_override
    client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session):
    counter = {"n": 0}

    def _make(*roles, first_name="Test", last_name=None, password="Passw0rd!"):
        counter["n"] += 1
        n = counter["n"]
        return users.register_user(
            session,
            email=f"user{n}@example.com",
            first_name=first_name,
            last_name=last_name or f"User{n}",
            password=password,
            roles=roles or (RoleName.STUDENT,),
        )
    return _make


@pytest.fixture
def teacher(make_user):
    return make_user(RoleName.TEACHER, first_name="Terry")


@pytest.fixture
def student(make_user):
    return make_user(RoleName.STUDENT, first_name="Kai")


@pytest.fixture
def admin(make_user):
    return make_user(RoleName.ADMIN, first_name="Ada")


@pytest.fixture
def enrollment(session, student):
    row = Enrollment(student_id=student.id, course_title="English A2", classes_total=10)
    session.add(row)
    session.commit()
    return row


@pytest.fixture
def auth_headers():
    def _headers(user) -> dict:
        return {"Authorization": f"Bearer {issue_token(user)}"}
    return _headers


@pytest.fixture
def hide_first_lookup(monkeypatch):
    """Make ``session.get`` miss the first lookup of ``model``, as if another
    request inserted the row right after this one checked."""
    def _hide(session, model):
        real_get = session.get
        hidden = []

        def get(entity, ident, **kwargs):
            if entity is model and not hidden:
                hidden.append(ident)
                return None
            return real_get(entity, ident, **kwargs)

        monkeypatch.setattr(session, "get", get)
    return _hide
