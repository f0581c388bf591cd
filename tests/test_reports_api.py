from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from pathlab.database import utcnow
from pathlab.models import Counter, Department, LabReport
from pathlab.services.assembler import ReportAssembler
from pathlab.services.authority import AuthorityResolver
from pathlab.services.references import ReferenceResolver


def _report_body(receipt="500", **overrides):
    body = {
        "receiptNo": receipt,
        "registrationNo": "REG-1",
        "labYearlyNo": "LY-2026-0001",
        "labDailyNo": "1",
        "department": "pathology",
        "doctor": "Dr. Rao",
        "roomNo": "12",
        "patientType": "OPD",
        "patientData": {"firstName": "Asha", "lastName": "Verma", "age": 34, "gender": "Female"},
        "testResults": [
            {"testName": "C.B.C", "category": "General", "parameters": [{"name": "Haemoglobin", "result": "13.5"}]},
            {"testName": "MP CARD", "parameters": [{"name": "Result", "result": "Negative"}]},
        ],
    }
    body.update(overrides)
    return body


def _legacy_row(receipt, tests, created_at, patient_type="OPD", report_id=None, **fields):
    return LabReport(
        report_id=report_id or f"OLD-{receipt}-{created_at:%H%M%S}",
        receipt_no=receipt,
        legacy=True,
        patient_type=patient_type,
        patient_name=fields.pop("patient_name", "Legacy Patient"),
        patient_data={"fullName": "Legacy Patient"},
        test_results=tests,
        created_at=created_at,
        updated_at=created_at,
        **fields,
    )


def test_create_resolves_every_link(client, masters):
    response = client.post("/reports", json=_report_body(), headers={"X-User": "tech1"})
    assert response.status_code == 201
    payload = response.json()
    assert payload["statusCode"] == 201
    data = payload["data"]
    assert payload["reportId"] == data["reportId"] == "RPT000001"
    assert data["receiptNo"] == "500"
    assert data["createdBy"] == "tech1"
    assert data["departmentRef"] == masters.pathology
    assert data["roomRef"] == masters.room
    assert data["doctorRef"] == masters.rao
    assert data["patientData"]["fullName"] == "Asha Verma"

    cbc, mp_card = data["testResults"]
    assert cbc["testName"] == "C.B.C"
    assert cbc["testDefinitionRef"] == masters.cbc
    assert cbc["category"] == "HAEMATOLOGY"
    assert cbc["parameters"][0]["parameterRef"] == masters.haemoglobin
    assert cbc["parameters"][0]["unitRef"] == masters.grams
    assert mp_card["testDefinitionRef"] is None
    assert mp_card["category"] == "MICROBIOLOGY"
    assert mp_card["categoryRef"] == masters.microbiology
    assert "testResults.1.testDefinition" in data["unresolvedFields"]
    assert data["fullyResolved"] is False


def test_create_fills_links_from_invoice(client, masters):
    body = _report_body(
        receipt="900", registrationNo=None, department=None, doctor=None, roomNo=None, patientType=None
    )
    data = client.post("/reports", json=body).json()["data"]
    assert data["patientRef"] == masters.patient
    assert data["department"] == "Pathology"
    assert data["roomRef"] == masters.room
    assert data["doctorRef"] == masters.rao
    assert data["invoiceRef"] is not None
    assert data["registrationRef"] is not None
    assert data["patientType"] == "OPD"


def test_create_requires_identifier_and_patient(client, masters):
    response = client.post("/reports", json={"patientData": {"firstName": "A"}})
    assert response.status_code == 400
    assert response.json()["error"] == "BadRequest"

    response = client.post("/reports", json={"receiptNo": "42"})
    assert response.status_code == 400
    assert response.json()["message"] == "Patient data is required"


def test_duplicate_receipt_is_rejected(client, db_session, masters):
    assert client.post("/reports", json=_report_body(receipt="500")).status_code == 201
    response = client.post("/reports", json=_report_body(receipt="00500"))
    assert response.status_code == 409
    body = response.json()
    assert body["details"]["code"] == 11000
    assert body["details"]["field"] == "receiptNo"
    assert len(db_session.execute(select(LabReport)).scalars().all()) == 1


def test_duplicate_receipt_caught_by_unique_index(client, db_session, masters, monkeypatch):
    assert client.post("/reports", json=_report_body(receipt="501")).status_code == 201
    monkeypatch.setattr(ReportAssembler, "_receipt_taken", lambda self, receipt, exclude_id=None: False)
    response = client.post("/reports", json=_report_body(receipt="501"))
    assert response.status_code == 409
    assert response.json()["details"]["field"] == "receiptNo"
    assert len(db_session.execute(select(LabReport)).scalars().all()) == 1


def test_report_id_conflict_bumps_and_retries(client, db_session, masters):
    db_session.add(_legacy_row("300", [], datetime(2025, 1, 1), report_id="RPT000001"))
    db_session.commit()
    response = client.post("/reports", json=_report_body(receipt="301"))
    assert response.status_code == 201
    assert response.json()["reportId"] == "RPT000002"


def test_sequential_creates_get_distinct_ids(client, masters):
    ids = [client.post("/reports", json=_report_body(receipt=str(600 + n))).json()["reportId"] for n in range(4)]
    assert ids == ["RPT000001", "RPT000002", "RPT000003", "RPT000004"]


def test_failed_lookup_is_recorded_not_fatal(client, masters, monkeypatch):
    def unreachable(self, name):
        raise OperationalError("SELECT departments", {}, Exception("server closed the connection"))

    monkeypatch.setattr(ReferenceResolver, "department", unreachable)
    response = client.post("/reports", json=_report_body(receipt="502"))
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["departmentRef"] is None
    assert "departmentRef" in data["unresolvedFields"]
    assert data["testResults"][0]["testDefinitionRef"] == masters.cbc


def test_listing_groups_rows_sharing_a_receipt(client, db_session, masters):
    db_session.add_all(
        [
            _legacy_row("500", [{"testName": "A"}, {"testName": "B"}], datetime(2026, 3, 1, 9, 0)),
            _legacy_row(
                "500",
                [{"testName": "C"}, {"testName": "D"}, {"testName": "E"}],
                datetime(2026, 3, 1, 11, 0),
                lab_daily_no="7",
            ),
        ]
    )
    db_session.commit()

    payload = client.get("/reports").json()
    assert payload["pagination"]["totalReports"] == 1
    (group,) = payload["data"]
    assert [t["testName"] for t in group["testResults"]] == ["A", "B", "C", "D", "E"]
    assert group["originalReportCount"] == 2
    assert group["labDailyNo"] == "7"


def test_stale_type_corrected_on_list_and_fetch(client, db_session, masters):
    row = _legacy_row("1024", [{"testName": "CBC"}], datetime(2026, 3, 2, 10, 0), patient_type="OPD")
    db_session.add(row)
    db_session.commit()

    listed = client.get("/reports").json()["data"]
    assert listed[0]["patientType"] == "IPD"
    assert listed[0]["registrationDate"].startswith("2026-03-02")

    fetched = client.get(f"/reports/{row.id}").json()["data"]
    assert fetched["patientType"] == "IPD"
    assert client.get(f"/reports/{row.report_id}").json()["data"]["id"] == row.id


def test_type_filter_uses_resolved_type_before_paging(client, db_session, masters):
    db_session.add_all(
        [
            _legacy_row("1024", [], datetime(2026, 3, 2, 10, 0), patient_type="OPD"),
            _legacy_row("777", [], datetime(2026, 3, 1, 10, 0), patient_type="IPD"),
            _legacy_row("888", [], datetime(2026, 3, 4, 10, 0), patient_type="IPD"),
        ]
    )
    db_session.commit()

    payload = client.get("/reports", params={"patientType": "IPD", "limit": 1}).json()
    assert payload["pagination"]["totalReports"] == 2
    assert payload["pagination"]["totalPages"] == 2
    assert payload["pagination"]["hasNext"] is True
    assert [g["receiptNo"] for g in payload["data"]] == ["888"]

    second = client.get("/reports", params={"patientType": "IPD", "limit": 1, "page": 2}).json()
    assert [g["receiptNo"] for g in second["data"]] == ["1024"]
    assert second["pagination"]["hasPrev"] is True


def test_listing_sort_and_filters(client, db_session, masters):
    db_session.add_all(
        [
            _legacy_row("41", [], datetime(2026, 5, 5, 8, 0), lab_daily_no="10", lab_yearly_no="LY-41",
                        patient_name="Ravi Kumar"),
            _legacy_row("42", [], datetime(2026, 5, 5, 9, 0), lab_daily_no="2", lab_yearly_no="LY-42",
                        patient_name="Meena Das"),
            _legacy_row("43", [], datetime(2026, 5, 6, 7, 0), lab_daily_no="1", lab_yearly_no="XY-43",
                        patient_name="Ravi Shankar"),
        ]
    )
    db_session.commit()

    receipts = [g["receiptNo"] for g in client.get("/reports").json()["data"]]
    assert receipts == ["43", "42", "41"]

    by_day = client.get("/reports", params={"particularDate": "05-05-2026"}).json()["data"]
    assert sorted(g["receiptNo"] for g in by_day) == ["41", "42"]

    by_name = client.get("/reports", params={"q": "ravi"}).json()["data"]
    assert sorted(g["receiptNo"] for g in by_name) == ["41", "43"]

    by_yearly = client.get("/reports", params={"labYearlyNo": "ly-"}).json()["data"]
    assert sorted(g["receiptNo"] for g in by_yearly) == ["41", "42"]

    by_range = client.get("/reports", params={"dateFrom": "2026-05-06", "dateTo": "2026-05-06"}).json()["data"]
    assert [g["receiptNo"] for g in by_range] == ["43"]

    assert [g["receiptNo"] for g in client.get("/reports", params={"receipt": "042"}).json()["data"]] == ["42"]


def test_listing_survives_authority_failure(client, db_session, masters, monkeypatch):
    db_session.add(_legacy_row("1024", [], datetime(2026, 3, 2, 10, 0), patient_type="OPD"))
    db_session.commit()

    def unreachable(self, pairs):
        raise OperationalError("SELECT pathology_invoices", {}, Exception("timeout"))

    monkeypatch.setattr(AuthorityResolver, "resolve_many", unreachable)
    response = client.get("/reports")
    assert response.status_code == 200
    assert response.json()["data"][0]["patientType"] == "OPD"


def test_enrich_and_populate_inline_catalog_fields(client, masters):
    created = client.post("/reports", json=_report_body(receipt="503")).json()["data"]

    listed = client.get("/reports", params={"enrich": "true"}).json()["data"][0]
    assert listed["testResults"][0]["testDefinition"] == {"id": masters.cbc, "name": "CBC", "testType": "multiple"}
    assert listed["testResults"][0]["serviceHead"]["testName"] == "CBC"

    fetched = client.get(f"/reports/{created['id']}", params={"populate": "true"}).json()["data"]
    assert fetched["testResults"][1]["categoryObj"]["name"] == "MICROBIOLOGY"
    assert "testDefinition" not in fetched["testResults"][1]


def test_by_receipt_merges_rows_in_creation_order(client, db_session, masters):
    db_session.add_all(
        [
            _legacy_row("1024", [{"testName": "Later"}], datetime(2026, 3, 2, 12, 0)),
            _legacy_row("1024", [{"testName": "Earlier"}], datetime(2026, 3, 2, 8, 0)),
        ]
    )
    db_session.commit()

    payload = client.get("/reports/by-receipt/01024").json()
    assert payload["originalReportCount"] == 2
    assert [t["testName"] for t in payload["data"]["testResults"]] == ["Earlier", "Later"]
    assert payload["data"]["patientType"] == "IPD"

    assert client.get("/reports/by-receipt/4040").status_code == 404


def test_get_unknown_report_is_404(client, masters):
    response = client.get("/reports/does-not-exist")
    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


def test_update_records_tracked_changes(client, masters):
    created = client.post("/reports", json=_report_body(receipt="504")).json()["data"]

    response = client.put(
        f"/reports/{created['reportId']}",
        json={
            "patientData": {"firstName": "Usha"},
            "testResults": [
                {"testName": "C.B.C", "parameters": [{"name": "Haemoglobin", "result": "11.0"}]},
            ],
            "editedBy": "dr.mehta",
        },
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["reportId"] == created["reportId"]
    assert data["createdAt"] == created["createdAt"]
    assert data["isEdited"] is True
    assert data["lastEditedBy"] == "dr.mehta"
    assert data["patientData"]["firstName"] == "Usha"
    assert data["patientData"]["lastName"] == "Verma"
    assert data["patientData"]["fullName"] == "Usha"
    assert data["testResults"][0]["testDefinitionRef"] == masters.cbc

    (entry,) = data["editHistory"]
    assert entry["editedBy"] == "dr.mehta"
    assert entry["changes"]["patientData.firstName"] == {"before": "Asha", "after": "Usha"}
    assert entry["changes"]["testResults"]["details"] == [
        {"testName": "C.B.C", "parameter": "Haemoglobin", "before": "13.5", "after": "11.0"}
    ]


def test_update_without_tracked_changes_keeps_history_empty(client, masters):
    created = client.post("/reports", json=_report_body(receipt="505")).json()["data"]
    data = client.put(f"/reports/{created['id']}", json={"reportStatus": "Printed"}).json()["data"]
    assert data["reportStatus"] == "Printed"
    assert data["editHistory"] == []
    assert data["isEdited"] is False
    assert data["patientData"] == created["patientData"]
    assert data["testResults"] == created["testResults"]


def test_update_to_taken_receipt_conflicts(client, masters):
    client.post("/reports", json=_report_body(receipt="506"))
    created = client.post("/reports", json=_report_body(receipt="507")).json()["data"]
    response = client.put(f"/reports/{created['id']}", json={"receiptNo": "506"})
    assert response.status_code == 409


def test_delete_steps_counter_back_only_for_latest(client, db_session, masters):
    first = client.post("/reports", json=_report_body(receipt="510")).json()["data"]
    second = client.post("/reports", json=_report_body(receipt="511")).json()["data"]
    counter_name = f"pathology_report_{utcnow().year}"

    response = client.delete(f"/reports/{first['id']}")
    assert response.status_code == 200
    assert response.json()["data"]["counterReleased"] is False

    assert client.delete(f"/reports/{second['reportId']}").json()["data"]["counterReleased"] is True
    assert db_session.get(Counter, counter_name).value == 1
    assert client.delete(f"/reports/{second['id']}").status_code == 404


def test_exists_and_counts(client, masters):
    client.post("/reports", json=_report_body(receipt="00520"))
    client.post("/reports", json=_report_body(receipt="521", reportDate="2025-12-31"))
    year = utcnow().year

    assert client.get("/reports/exists", params={"receiptNo": "520"}).json()["data"]["exists"] is True
    assert client.get("/reports/exists", params={"receipt": "0520"}).json()["data"]["exists"] is True
    assert client.get("/reports/exists", params={"receiptNo": "999"}).json()["data"]["exists"] is False

    bulk = client.get("/reports/exists-bulk", params={"receipts": "520, 521,999"}).json()["data"]
    assert bulk["existsByReceiptYear"] == {f"520-{year}": True, "521-2025": True}

    scoped = client.get("/reports/exists-bulk", params={"receipts": "520,521", "year": 2025}).json()["data"]
    assert scoped["existsByReceiptYear"] == {"521-2025": True}

    assert client.get("/reports/count-total").json()["data"]["totalReports"] == 2
    today = utcnow().date().isoformat()
    daily = client.get("/reports/daily-count", params={"date": today}).json()["data"]
    assert daily == {"count": 2, "date": today}


def test_repair_links_reresolves_unresolved_reports(client, db_session, masters):
    body = {
        "registrationNo": "REG-77",
        "labDailyNo": "3",
        "department": "Cardiology",
        "patientData": {"firstName": "Kiran", "patientId": "PAT000001"},
        "testResults": [{"testName": "CBC"}],
    }
    created = client.post("/reports", json=body).json()["data"]
    assert created["unresolvedFields"] == ["departmentRef"]

    db_session.add(Department(name="Cardiology", code="CARD"))
    db_session.commit()

    summary = client.post("/reports/admin/repair-links", params={"limit": 10}).json()["data"]
    assert summary == {"processed": 1, "updated": 1, "errorsCount": 0, "sampleErrors": []}

    repaired = client.get(f"/reports/{created['id']}").json()["data"]
    assert repaired["departmentRef"] is not None
    assert repaired["fullyResolved"] is True
    assert repaired["reportId"] == created["reportId"]
    assert client.post("/reports/admin/repair-links").json()["data"]["processed"] == 0


def test_duplicate_receipt_held_by_legacy_rows_is_rejected(client, db_session, masters):
    db_session.add(_legacy_row("950", [{"testName": "CBC"}], datetime(2025, 6, 1, 9, 0)))
    db_session.commit()

    response = client.post("/reports", json=_report_body(receipt="0950"))
    assert response.status_code == 409
    assert response.json()["details"]["field"] == "receiptNo"
    assert len(db_session.execute(select(LabReport).where(LabReport.receipt_no == "950")).scalars().all()) == 1
    assert db_session.execute(select(Counter)).scalars().all() == []


def test_report_id_collisions_exhaust_attempts(client, db_session, masters):
    db_session.add_all(
        [
            _legacy_row(str(310 + n), [], datetime(2025, 1, 1, 8, n), report_id=f"RPT00000{n}")
            for n in range(1, 6)
        ]
    )
    db_session.commit()

    response = client.post("/reports", json=_report_body(receipt="320"))
    assert response.status_code == 500
    body = response.json()
    assert body["statusCode"] == 500
    assert body["error"] == "InternalServerError"
    assert body["message"] == "Could not allocate a unique report id after 5 attempts"
    assert db_session.execute(select(LabReport).where(LabReport.receipt_no == "320")).first() is None


def test_repair_links_moves_past_reports_that_cannot_resolve(client, db_session, masters):
    for receipt in ("701", "702"):
        body = _report_body(receipt=receipt, testResults=[{"testName": "Unheard Of Assay"}])
        assert client.post("/reports", json=body).json()["data"]["fullyResolved"] is False
    fixable = client.post(
        "/reports",
        json={
            "labDailyNo": "9",
            "department": "Cardiology",
            "patientData": {"firstName": "Kiran", "patientId": "PAT000001"},
            "testResults": [{"testName": "CBC"}],
        },
    ).json()["data"]
    assert fixable["unresolvedFields"] == ["departmentRef"]

    db_session.add(Department(name="Cardiology", code="CARD"))
    db_session.commit()

    first = client.post("/reports/admin/repair-links", params={"limit": 2}).json()["data"]
    assert first["processed"] == 2
    assert first["updated"] == 0

    second = client.post("/reports/admin/repair-links", params={"limit": 2}).json()["data"]
    assert second["processed"] == 2
    assert second["updated"] == 1

    repaired = client.get(f"/reports/{fixable['id']}").json()["data"]
    assert repaired["departmentRef"] is not None
    assert repaired["fullyResolved"] is True


def test_listing_pages_groups_in_the_database(client, db_session, masters):
    db_session.add_all(
        [
            _legacy_row("61", [{"testName": "A"}], datetime(2026, 4, 1, 8, 0), lab_daily_no="3"),
            _legacy_row("61", [{"testName": "B"}], datetime(2026, 4, 1, 9, 0), lab_daily_no="4"),
            _legacy_row("62", [{"testName": "C"}], datetime(2026, 4, 1, 10, 0), lab_daily_no="2"),
            _legacy_row("63", [], datetime(2026, 4, 1, 11, 0), lab_daily_no="A-1"),
            _legacy_row(None, [{"testName": "D"}], datetime(2026, 3, 30, 7, 0), report_id="OLD-NO-RECEIPT"),
        ]
    )
    db_session.commit()

    first = client.get("/reports", params={"limit": 2}).json()
    assert first["pagination"]["totalReports"] == 4
    assert first["pagination"]["totalPages"] == 2
    assert [g["receiptNo"] for g in first["data"]] == ["63", "62"]

    second = client.get("/reports", params={"limit": 2, "page": 2}).json()
    merged, lone = second["data"]
    assert merged["receiptNo"] == "61"
    assert merged["labDailyNo"] == "4"
    assert merged["originalReportCount"] == 2
    assert [t["testName"] for t in merged["testResults"]] == ["A", "B"]
    assert lone["receiptNo"] is None
    assert lone["reportId"] == "OLD-NO-RECEIPT"
    assert lone["originalReportCount"] == 1
    assert second["pagination"]["hasNext"] is False
