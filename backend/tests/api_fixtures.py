"""
Shared setup for the API tests: environment, a SQLite database holding both
the backend and worker tables, and dependency overrides.
"""

import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="precast-api-tests-")
os.environ.setdefault("UPLOAD_DIR", os.path.join(_TEST_DIR, "uploads"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TEST_DIR, 'default.db')}")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.models.database_models import Base as BackendBase  # noqa: E402
from app.services.session_service import CallerContext  # noqa: E402
from worker.database_models import Base as WorkerBase  # noqa: E402

TEST_CALLER = CallerContext(
    session_id="session-1",
    user_id=1,
    user_name="Dana Levi",
    host_name="workstation-7",
    ip_address="10.0.0.7",
    email="dana@example.com"
)


def make_session_factory(testcase) -> sessionmaker:
    handle, path = tempfile.mkstemp(suffix=".db", dir=_TEST_DIR)
    os.close(handle)
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})
    BackendBase.metadata.create_all(engine)
    WorkerBase.metadata.create_all(engine)
    testcase.addCleanup(os.remove, path)
    testcase.addCleanup(engine.dispose)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_db(session_factory):
    def get_test_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()
    return get_test_db
