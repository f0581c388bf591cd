from collections.abc import Generator
from datetime import datetime
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import pathlab.models  # noqa: F401
from pathlab.database import Base, get_db
from pathlab.main import app
from pathlab.models import (
    CategoryHead,
    Department,
    Doctor,
    DoctorRoomDirectory,
    PathologyInvoice,
    PathologyRegistration,
    Patient,
    Room,
    ServiceHead,
    TestCategory,
    TestDefinition,
    TestParameter,
    Unit,
)


@pytest.fixture()
def db_session() -> Generator:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db_session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    # Tests use an in-memory DB via dependency override; skip app startup side effects.
    original_startup = list(app.router.on_startup)
    app.router.on_startup.clear()
    with TestClient(app) as test_client:
        yield test_client
    app.router.on_startup[:] = original_startup
    app.dependency_overrides.clear()


@pytest.fixture()
def masters(db_session) -> SimpleNamespace:
    """A small catalog, directory and billing fixture shared by matcher, authority and API tests."""
    haematology = TestCategory(name="HAEMATOLOGY", category_code="CAT001")
    biochemistry = TestCategory(name="BIOCHEMISTRY", category_code="CAT002")
    microbiology = TestCategory(name="MICROBIOLOGY", category_code="CAT003")
    serology = TestCategory(name="SEROLOGY", category_code="CAT004")
    db_session.add_all([haematology, biochemistry, microbiology, serology])

    grams = Unit(name="g/dL")
    cells = Unit(name="cells/cumm")
    db_session.add_all([grams, cells])

    biochem_head = CategoryHead(category_name="Biochemistry")
    db_session.add(biochem_head)
    db_session.flush()

    cbc_service = ServiceHead(test_name="CBC", category_head_id=None, price="250")
    sugar_service = ServiceHead(test_name="Blood Sugar Fasting", category_head_id=biochem_head.id, price="80")
    db_session.add_all([cbc_service, sugar_service])
    db_session.flush()

    cbc = TestDefinition(
        name="CBC",
        short_name="Complete Blood Count",
        category_id=haematology.id,
        service_head_id=cbc_service.id,
        test_type="multiple",
    )
    lipid = TestDefinition(name="Lipid Profile", short_name="LIPID", category_id=biochemistry.id)
    db_session.add_all([cbc, lipid])
    db_session.flush()
    haemoglobin = TestParameter(definition_id=cbc.id, order=1, name="Haemoglobin", unit_id=grams.id)
    wbc = TestParameter(definition_id=cbc.id, order=2, name="Total WBC Count", unit_id=cells.id)
    db_session.add_all([haemoglobin, wbc])

    pathology = Department(name="Pathology", code="PATH")
    db_session.add(pathology)
    db_session.flush()
    rao = Doctor(name="Dr. Rao", department_id=pathology.id)
    room = Room(room_number="RN-12", department_id=pathology.id)
    patient = Patient(patient_code="PAT000001", full_name="Asha Verma")
    db_session.add_all([rao, room, patient])
    db_session.flush()
    db_session.add(DoctorRoomDirectory(doctor_id=rao.id, room_id=room.id, department_id=pathology.id))

    db_session.add_all(
        [
            PathologyInvoice(receipt_number="1024", mode="IPD", patient={"patientId": "PAT000001"}),
            PathologyRegistration(receipt_number="1024", registration_date=datetime(2026, 3, 2, 9, 30)),
            PathologyInvoice(receipt_number="777", mode="OPD"),
            PathologyRegistration(receipt_number="777", mode="IPD", registration_date=datetime(2026, 3, 1, 10, 0)),
            PathologyInvoice(
                receipt_number="900",
                patient={"patientId": "PAT000001", "type": "OPD"},
                department_name="Pathology",
                doctor_room_number="12",
            ),
            PathologyRegistration(receipt_number="900", registration_date=datetime(2026, 3, 3, 8, 0)),
        ]
    )
    db_session.commit()

    return SimpleNamespace(
        haematology=haematology.id,
        biochemistry=biochemistry.id,
        microbiology=microbiology.id,
        serology=serology.id,
        grams=grams.id,
        cells=cells.id,
        cbc_service=cbc_service.id,
        sugar_service=sugar_service.id,
        cbc=cbc.id,
        lipid=lipid.id,
        haemoglobin=haemoglobin.id,
        wbc=wbc.id,
        pathology=pathology.id,
        rao=rao.id,
        room=room.id,
        patient=patient.id,
    )
