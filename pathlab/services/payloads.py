from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from pathlab.models.catalog import ServiceHead, TestCategory, TestDefinition
from pathlab.models.lab_report import LabReport


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def report_payload(report: LabReport) -> dict:
    return {
        "id": report.id,
        "reportId": report.report_id,
        "receiptNo": report.receipt_no,
        "registrationNo": report.registration_no,
        "labYearlyNo": report.lab_yearly_no,
        "labDailyNo": report.lab_daily_no,
        "labNumber": report.lab_number,
        "roomNo": report.room_no,
        "department": report.department,
        "doctor": report.doctor,
        "doctorRefNo": report.doctor_ref_no,
        "patientRef": report.patient_ref,
        "departmentRef": report.department_ref,
        "doctorRef": report.doctor_ref,
        "roomRef": report.room_ref,
        "invoiceRef": report.invoice_ref,
        "registrationRef": report.registration_ref,
        "patientType": report.patient_type,
        "patientData": dict(report.patient_data or {}),
        "testResults": list(report.test_results or []),
        "reportDate": report.report_date,
        "reportStatus": report.report_status,
        "unresolvedFields": list(report.unresolved_fields or []),
        "fullyResolved": report.fully_resolved,
        "createdAt": _iso(report.created_at),
        "createdBy": report.created_by,
        "updatedAt": _iso(report.updated_at),
        "isEdited": report.is_edited,
        "lastEditedAt": _iso(report.last_edited_at),
        "lastEditedBy": report.last_edited_by,
        "editHistory": list(report.edit_history or []),
    }


def _collect_refs(payloads: list[dict], key: str) -> set[int]:
    refs = set()
    for payload in payloads:
        for line in payload.get("testResults") or []:
            value = line.get(key)
            if isinstance(value, int):
                refs.add(value)
    return refs


def populate_test_refs(db: Session, payloads: list[dict]) -> list[dict]:
    """Inline definition, category and service display fields on every test line.

    One query per master table regardless of how many reports are passed.
    """
    definition_ids = _collect_refs(payloads, "testDefinitionRef")
    category_ids = _collect_refs(payloads, "categoryRef")
    service_ids = _collect_refs(payloads, "serviceRef")

    definitions = {}
    if definition_ids:
        rows = db.execute(select(TestDefinition).where(TestDefinition.id.in_(definition_ids))).scalars()
        definitions = {row.id: {"id": row.id, "name": row.name, "testType": row.test_type} for row in rows}
    categories = {}
    if category_ids:
        rows = db.execute(select(TestCategory).where(TestCategory.id.in_(category_ids))).scalars()
        categories = {row.id: {"id": row.id, "name": row.name, "categoryCode": row.category_code} for row in rows}
    services = {}
    if service_ids:
        rows = db.execute(select(ServiceHead).where(ServiceHead.id.in_(service_ids))).scalars()
        services = {row.id: {"id": row.id, "testName": row.test_name, "price": row.price} for row in rows}

    populated = []
    for payload in payloads:
        lines = []
        for line in payload.get("testResults") or []:
            line = dict(line)
            if line.get("testDefinitionRef") in definitions:
                line["testDefinition"] = definitions[line["testDefinitionRef"]]
            if line.get("categoryRef") in categories:
                line["categoryObj"] = categories[line["categoryRef"]]
            if line.get("serviceRef") in services:
                line["serviceHead"] = services[line["serviceRef"]]
            lines.append(line)
        populated.append({**payload, "testResults": lines})
    return populated
