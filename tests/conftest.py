import os
import uuid

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("CELERY_ALWAYS_EAGER", "true")
os.environ.setdefault("VIEWER_ALLOWED_ORIGINS", "https://library.example.edu")
os.environ.setdefault("API_RATE_LIMIT_ENABLED", "false")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from reportlab.lib.pagesizes import A4, landscape, letter  # noqa: E402

from app.db import Base, SessionLocal, engine, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models.identity import Principal, PrincipalRole  # noqa: E402
from app.models.library import ApprovalStatus  # noqa: E402
from app.services import identity  # noqa: E402
from app.services.attempts import AttemptLimiter, AttemptPolicy  # noqa: E402
from app.services.delivery import DeliveryService  # noqa: E402
from app.services.mfa import MfaService  # noqa: E402
from app.services.origins import OriginPolicy  # noqa: E402
from app.services.security_events import SecurityTelemetry  # noqa: E402
from app.services.viewing_session import SessionLedger  # noqa: E402
from tests.factories import PASSWORD, build_pdf, create_report  # noqa: E402
from tests.mocks import FakeClock, FakeDispatcher  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _schema():
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture()
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
        session.close()


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def fake_dispatcher():
    return FakeDispatcher()


@pytest.fixture()
def limiter(clock):
    return AttemptLimiter(AttemptPolicy(max_attempts=3, window_seconds=60), clock=clock)


@pytest.fixture()
def mfa_service(fake_dispatcher, limiter):
    return MfaService(
        code_dispatcher=fake_dispatcher,
        limiter=limiter,
        issuer="Bib-Esprim",
        window_steps=2,
        sms_code_ttl_seconds=300,
        retain_secret_on_disable=False,
    )


@pytest.fixture()
def ledger(clock):
    ledger = SessionLedger(
        max_duration_seconds=7200,
        warn_threshold_seconds=600,
        extendable=True,
        max_extensions=1,
        max_extension_seconds=3600,
        tombstone_seconds=300,
        audit_enabled=False,
        clock=clock,
        use_timers=False,
    )
    yield ledger
    ledger.shutdown()


@pytest.fixture()
def telemetry(ledger):
    return SecurityTelemetry(ledger)


@pytest.fixture()
def origin_policy():
    return OriginPolicy(
        allowed_origins=("https://library.example.edu",), allow_loopback=True
    )


@pytest.fixture()
def delivery_service(ledger, origin_policy):
    return DeliveryService(ledger, origin_policy)


@pytest.fixture()
def client(db_session, ledger, telemetry, mfa_service, delivery_service):
    def _get_db():
        yield db_session

    saved = {
        name: getattr(app.state, name)
        for name in ("ledger", "telemetry", "mfa", "delivery")
    }
    app.state.ledger = ledger
    app.state.telemetry = telemetry
    app.state.mfa = mfa_service
    app.state.delivery = delivery_service
    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)
        for name, value in saved.items():
            setattr(app.state, name, value)


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------


def _create_principal(db_session, role: PrincipalRole, first_name: str, **kwargs):
    p = Principal(
        first_name=first_name,
        last_name="Tester",
        email=f"{first_name.lower()}-{uuid.uuid4().hex[:8]}@esprim.tn",
        role=role,
        password_hash=identity.hash_password(PASSWORD),
        **kwargs,
    )
    db_session.add(p)
    db_session.commit()
    db_session.refresh(p)
    return p


@pytest.fixture()
def student(db_session):
    return _create_principal(
        db_session, PrincipalRole.student, "Alice", phone="+216 20 123 456"
    )


@pytest.fixture()
def other_student(db_session):
    return _create_principal(db_session, PrincipalRole.student, "Bob")


@pytest.fixture()
def teacher(db_session):
    return _create_principal(db_session, PrincipalRole.teacher, "Carol")


@pytest.fixture()
def admin(db_session):
    return _create_principal(db_session, PrincipalRole.admin, "Dana")


def _headers(principal, mfa):
    token = identity.create_access_token(principal, mfa=mfa)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_headers(student):
    return _headers(student, mfa=False)


@pytest.fixture()
def other_auth_headers(other_student):
    return _headers(other_student, mfa=False)


@pytest.fixture()
def teacher_headers(teacher):
    return _headers(teacher, mfa=True)


@pytest.fixture()
def admin_headers(admin):
    return _headers(admin, mfa=True)


# ---------------------------------------------------------------------------
# Reports and PDFs
# ---------------------------------------------------------------------------


@pytest.fixture()
def pdf_bytes():
    return build_pdf(pages=3)


@pytest.fixture()
def mixed_pdf_bytes():
    return build_pdf(pagesize=[letter, landscape(A4), A4])


@pytest.fixture()
def public_report(db_session, teacher):
    return create_report(db_session, teacher)


@pytest.fixture()
def private_report(db_session, teacher):
    return create_report(db_session, teacher, public_access=False)


@pytest.fixture()
def pending_report(db_session, student):
    return create_report(
        db_session, student, approval_status=ApprovalStatus.pending
    )
