"""Pytest fixtures for testing"""

import uuid
import pytest
from typing import Dict, Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from school_ledger.api.main import create_app
from school_ledger.domain.models import CallerIdentity
from school_ledger.infrastructure.database.models import (
    AcademicTerm,
    Base,
    LedgerCategory,
    Organization,
    Student,
)
from school_ledger.infrastructure.database.session import get_db


# Test database (file based so worker threads share it)
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False, "timeout": 30})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def school(db: Session) -> Dict[str, object]:
    """One organization with a student, two terms and a few categories"""
    org = Organization(id=uuid.uuid4(), code="QMJS", name="Queen Mary Junior School")
    other_org = Organization(id=uuid.uuid4(), code="OTH", name="Other School")
    db.add_all([org, other_org])
    db.flush()

    student = Student(
        id=uuid.uuid4(),
        organization_id=org.id,
        student_number="QM-001",
        first_name="Amina",
        last_name="Nakato",
        parent_phone="0772123456",
    )
    no_phone = Student(
        id=uuid.uuid4(),
        organization_id=org.id,
        student_number="QM-002",
        first_name="Brian",
        last_name="Okello",
    )
    outsider = Student(
        id=uuid.uuid4(),
        organization_id=other_org.id,
        student_number="OT-001",
        first_name="Carol",
        last_name="Achieng",
    )
    term1 = AcademicTerm(id=uuid.uuid4(), organization_id=org.id, name="Term 1 2024", year=2024, term_number=1)
    term2 = AcademicTerm(id=uuid.uuid4(), organization_id=org.id, name="Term 2 2024", year=2024, term_number=2)
    fees = LedgerCategory(id=uuid.uuid4(), organization_id=org.id, kind="income", name="School Fees")
    utilities = LedgerCategory(id=uuid.uuid4(), organization_id=org.id, kind="expense", name="Utilities")
    stationery = LedgerCategory(id=uuid.uuid4(), organization_id=org.id, kind="expense", name="Stationery")
    db.add_all([student, no_phone, outsider, term1, term2, fees, utilities, stationery])
    db.commit()

    return {
        "org": org,
        "other_org": other_org,
        "student": student,
        "no_phone": no_phone,
        "outsider": outsider,
        "term1": term1,
        "term2": term2,
        "fees": fees,
        "utilities": utilities,
        "stationery": stationery,
    }


@pytest.fixture
def admin(school) -> CallerIdentity:
    return CallerIdentity(
        organization_id=school["org"].id,
        user_id=uuid.uuid4(),
        display_name="Grace Admin",
        role="admin",
    )


@pytest.fixture
def headers_for(admin: CallerIdentity):
    """Build identity headers for the seeded school with a given role"""

    def build(role: str = "admin") -> Dict[str, str]:
        return {
            "X-Organization-Id": str(admin.organization_id),
            "X-User-Id": str(admin.user_id),
            "X-User-Name": admin.display_name,
            "X-User-Role": role,
        }

    return build


@pytest.fixture
def headers(headers_for) -> Dict[str, str]:
    """Identity headers for an admin of the seeded school"""
    return headers_for("admin")


@pytest.fixture
def client(db: Session) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)
