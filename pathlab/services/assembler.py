"""Write path for lab reports: validate, allocate an id, resolve, persist.

Every resolution step is read-only and guarded on its own. A step that fails
with a database error is logged, recorded in `unresolved_fields` and treated
as a miss, so a report is always stored with whatever could be resolved.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from pathlab.config import settings
from pathlab.database import utcnow
from pathlab.models.lab_report import LabReport
from pathlab.schemas.lab_report import RawReportInput
from pathlab.services.authority import AuthorityResolver
from pathlab.services.errors import DuplicateReceiptError, ReportNotFoundError, ReportValidationError
from pathlab.services.matcher import TestMatcher
from pathlab.services.normalizers import normalize_patient_type, normalize_receipt, valid_patient_type
from pathlab.services.payloads import report_payload
from pathlab.services.references import MISS, ReferenceResolver
from pathlab.services.retry import Conflict, classify_report_conflict, retry_on_conflict
from pathlab.services.sequence import SequenceGenerator

logger = logging.getLogger(__name__)

# (payload key, column) pairs compared when a report is edited.
TRACKED_FIELDS = (
    ("receiptNo", "receipt_no"),
    ("registrationNo", "registration_no"),
    ("labYearlyNo", "lab_yearly_no"),
    ("labDailyNo", "lab_daily_no"),
    ("reportDate", "report_date"),
)
TRACKED_PATIENT_FIELDS = ("firstName", "lastName", "fullName", "age", "gender")
MAX_PARAMETER_CHANGES = 50


def full_name(patient: dict) -> str:
    explicit = str(patient.get("fullName") or "").strip()
    if explicit:
        return explicit
    return " ".join(str(part).strip() for part in (patient.get("firstName"), patient.get("lastName")) if part)


def inferred_patient_type(payload: RawReportInput, patient: dict) -> str:
    """The type the submission claims for itself, before any authority source is consulted."""
    for value in (
        payload.patient_type,
        payload.mode,
        payload.address_type,
        patient.get("registrationMode"),
        patient.get("mode"),
    ):
        normalized = normalize_patient_type(value)
        if normalized:
            return "IPD" if normalized == "IPD" else "OPD"
    return "OPD"


def parameter_changes(before_tests: list, after_tests: list) -> list[dict]:
    """Per-test, per-parameter result differences, matched by test and parameter name."""

    def by_test_name(tests):
        return {str(t.get("testName") or t.get("name") or ""): t for t in tests if isinstance(t, dict)}

    before_map = by_test_name(before_tests)
    changes = []
    for test_name, after_test in by_test_name(after_tests).items():
        before_test = before_map.get(test_name) or {}
        after_params = {str(p.get("name")): p for p in after_test.get("parameters") or []}
        for before_param in before_test.get("parameters") or []:
            after_param = after_params.get(str(before_param.get("name")))
            if after_param is None or "result" not in after_param:
                continue
            if after_param["result"] != before_param.get("result"):
                changes.append(
                    {
                        "testName": test_name,
                        "parameter": before_param.get("name"),
                        "before": before_param.get("result"),
                        "after": after_param["result"],
                    }
                )
    return changes[:MAX_PARAMETER_CHANGES]


class ReportAssembler:
    def __init__(self, db: Session, actor: str = "System"):
        self.db = db
        self.actor = actor
        self.sequences = SequenceGenerator(db)
        self.references = ReferenceResolver(db)
        self.matcher = TestMatcher(db)
        self.authority = AuthorityResolver(db)

    # -- resolution -----------------------------------------------------

    def _attempt(self, step: str, fn: Callable, *args, default: Any = None) -> Any:
        try:
            return fn(*args)
        except SQLAlchemyError as exc:
            logger.warning("Resolution step %s failed, treating as unresolved: %s", step, exc)
            self.db.rollback()
            return default

    def resolve(self, payload: RawReportInput) -> dict:
        """Column values for `payload` with every reference the masters can supply."""
        unresolved: list[str] = []
        receipt = normalize_receipt(payload.receipt_no)
        patient = payload.patient_data.model_dump(by_alias=True, exclude_none=True) if payload.patient_data else {}
        department, doctor, room_no = payload.department, payload.doctor, payload.room_no
        patient_key = patient.get("registrationNumber") or patient.get("patientId") or payload.registration_no

        invoice = self._attempt("invoice", self.references.invoice, receipt) if receipt else None
        if invoice is not None:
            invoice_patient = invoice.patient if isinstance(invoice.patient, dict) else {}
            patient_key = patient_key or invoice_patient.get("patientId")
            department = department or invoice.department_name
            doctor = doctor or invoice.doctor_name
            room_no = room_no or invoice.doctor_room_number
        elif receipt:
            unresolved.append("invoiceRef")

        registration = self._attempt("registration", self.references.registration, receipt) if receipt else None
        if receipt and registration is None:
            unresolved.append("registrationRef")

        patient_ref = MISS
        if patient_key:
            patient_ref = self._attempt("patient", self.references.patient, str(patient_key), default=MISS)
            if not patient_ref.resolved:
                unresolved.append("patientRef")

        department_ref = MISS
        if department:
            department_ref = self._attempt("department", self.references.department, department, default=MISS)
            if not department_ref.resolved:
                unresolved.append("departmentRef")

        room_ref, doctor_ref = MISS, MISS
        if room_no:
            room_ref, doctor_ref = self._attempt("room", self.references.room, room_no, default=(MISS, MISS))
            if not room_ref.resolved:
                unresolved.append("roomRef")
        if not doctor_ref.resolved and doctor:
            doctor_ref = self._attempt("doctor", self.references.doctor, doctor, default=MISS)
        if not doctor_ref.resolved and (doctor or room_no):
            unresolved.append("doctorRef")

        test_results = []
        for index, line in enumerate(payload.test_results or []):
            outcome = self._attempt(f"testResults.{index}", self.matcher.resolve_line, line)
            if outcome is None:
                test_results.append(line.model_dump(by_alias=True))
                unresolved.append(f"testResults.{index}")
                continue
            stored, missing = outcome
            test_results.append(stored)
            unresolved.extend(f"testResults.{index}.{field}" for field in missing)

        inferred = inferred_patient_type(payload, patient)
        patient_type = self._attempt("patientType", self.authority.resolve, receipt, inferred)
        if patient_type is None:
            unresolved.append("patientType")
            patient_type = inferred

        name = full_name(patient)
        if patient:
            patient["fullName"] = name

        return {
            "receipt_no": receipt,
            "registration_no": payload.registration_no,
            "lab_yearly_no": payload.lab_yearly_no,
            "lab_daily_no": payload.lab_daily_no,
            "lab_number": payload.lab_number,
            "room_no": room_no,
            "department": department,
            "doctor": doctor,
            "doctor_ref_no": payload.doctor_ref_no,
            "patient_ref": patient_ref.value,
            "department_ref": department_ref.value,
            "doctor_ref": doctor_ref.value,
            "room_ref": room_ref.value,
            "invoice_ref": invoice.id if invoice is not None else None,
            "registration_ref": registration.id if registration is not None else None,
            "patient_type": patient_type,
            "patient_name": name,
            "patient_data": patient,
            "test_results": test_results,
            "report_date": payload.report_date or utcnow().date().isoformat(),
            "report_status": payload.report_status or "Completed",
            "unresolved_fields": unresolved,
            "fully_resolved": not unresolved,
        }

    # -- loading --------------------------------------------------------

    def load(self, identifier: str) -> LabReport:
        report = self.db.execute(
            select(LabReport).where(or_(LabReport.id == identifier, LabReport.report_id == identifier)).limit(1)
        ).scalar_one_or_none()
        if report is None:
            raise ReportNotFoundError("Pathology report not found")
        return report

    def rows_for_receipt(self, receipt_no) -> list[LabReport]:
        receipt = normalize_receipt(receipt_no)
        if receipt is None:
            return []
        stmt = select(LabReport).where(LabReport.receipt_no == receipt).order_by(LabReport.created_at, LabReport.id)
        return list(self.db.execute(stmt).scalars())

    def unified(self, base: LabReport, rows: list[LabReport]) -> dict:
        """`base` as payload, carrying every row's tests in creation order and the authoritative type."""
        payload = report_payload(base)
        if len(rows) > 1:
            payload["testResults"] = [line for row in rows for line in (row.test_results or [])]
        payload["patientType"] = self._attempt(
            "patientType",
            self.authority.resolve,
            base.receipt_no,
            base.patient_type,
            default=valid_patient_type(base.patient_type) or "OPD",
        )
        return payload

    def get(self, identifier: str) -> dict:
        report = self.load(identifier)
        rows = self.rows_for_receipt(report.receipt_no) if report.receipt_no else [report]
        return self.unified(report, rows or [report])

    def by_receipt(self, receipt_no: str) -> tuple[dict, int]:
        rows = self.rows_for_receipt(receipt_no)
        if not rows:
            raise ReportNotFoundError("No reports found for this receipt number")
        return self.unified(rows[0], rows), len(rows)

    # -- writes ---------------------------------------------------------

    @staticmethod
    def validate(payload: RawReportInput) -> None:
        if not (payload.receipt_no or payload.registration_no or payload.lab_yearly_no or payload.lab_daily_no):
            raise ReportValidationError(
                "At least one identifier (Receipt No, Registration No, Lab Yearly No, or Lab Daily No) is required"
            )
        if payload.patient_data is None:
            raise ReportValidationError("Patient data is required")

    def _receipt_taken(self, receipt: str | None, exclude_id: str | None = None) -> bool:
        if receipt is None:
            return False
        # Legacy rows count too: a receipt they hold is not free for a new report.
        stmt = select(LabReport.id).where(LabReport.receipt_no == receipt)
        if exclude_id is not None:
            stmt = stmt.where(LabReport.id != exclude_id)
        return self.db.execute(stmt.limit(1)).first() is not None

    def create(self, payload: RawReportInput) -> LabReport:
        self.validate(payload)
        receipt = normalize_receipt(payload.receipt_no)
        # The unique index decides races between new reports; this also covers receipts held by legacy rows.
        if self._receipt_taken(receipt):
            raise DuplicateReceiptError(receipt)

        scope, year = settings.report_counter_scope, utcnow().year
        _, report_id = self.sequences.next(scope, year)
        values = self.resolve(payload)
        created_by = payload.created_by or self.actor
        state = {"report_id": report_id}

        def persist() -> LabReport:
            report = LabReport(report_id=state["report_id"], created_by=created_by, **values)
            self.db.add(report)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                raise
            self.db.refresh(report)
            return report

        def advance() -> None:
            state["report_id"] = self.sequences.format(self.sequences.bump(scope, year))

        try:
            report = retry_on_conflict(persist, classify_report_conflict, advance, settings.sequence_max_attempts)
        except IntegrityError as exc:
            if classify_report_conflict(exc) is Conflict.RECEIPT:
                raise DuplicateReceiptError(receipt) from exc
            raise
        logger.info(
            "Created report %s for receipt %s (%s unresolved)", report.report_id, receipt, len(values["unresolved_fields"])
        )
        return report

    def diff(self, report: LabReport, incoming: dict) -> dict:
        changes = {}
        for key, column in TRACKED_FIELDS:
            if key not in incoming:
                continue
            before, after = getattr(report, column), incoming[key]
            if key == "receiptNo":
                after = normalize_receipt(after)
            if before != after:
                changes[key] = {"before": before, "after": after}

        existing_patient = report.patient_data or {}
        incoming_patient = incoming.get("patientData") or {}
        for key in TRACKED_PATIENT_FIELDS:
            if key in incoming_patient and existing_patient.get(key) != incoming_patient[key]:
                changes[f"patientData.{key}"] = {"before": existing_patient.get(key), "after": incoming_patient[key]}

        if incoming.get("testResults") is not None:
            details = parameter_changes(report.test_results or [], incoming["testResults"])
            if details:
                changes["testResults"] = {"before": "see details", "after": "see details", "details": details}
        return changes

    def update(self, identifier: str, payload: RawReportInput) -> LabReport:
        report = self.load(identifier)
        incoming = payload.model_dump(by_alias=True, exclude_unset=True)
        changes = self.diff(report, incoming)

        merged = {**report_payload(report), **incoming}
        if "patientData" in incoming:
            incoming_patient = incoming["patientData"] or {}
            patient = {**(report.patient_data or {}), **incoming_patient}
            patient["fullName"] = full_name(incoming_patient) or (report.patient_data or {}).get("fullName") or ""
            merged["patientData"] = patient
        merged_input = RawReportInput.model_validate(merged)

        receipt = normalize_receipt(merged_input.receipt_no)
        if receipt != report.receipt_no and self._receipt_taken(receipt, exclude_id=report.id):
            raise DuplicateReceiptError(receipt)

        values = self.resolve(merged_input)
        if "patientData" not in incoming:
            # Keep the stored snapshot untouched when the edit did not send one.
            values["patient_data"] = report.patient_data
            values["patient_name"] = report.patient_name
        for column, value in values.items():
            setattr(report, column, value)

        now = utcnow()
        report.updated_at = now
        if changes:
            editor = payload.edited_by or payload.updated_by or self.actor
            report.is_edited = True
            report.last_edited_at = now
            report.last_edited_by = editor
            report.edit_history = [
                *(report.edit_history or []),
                {"editedAt": now.isoformat(), "editedBy": editor, "changes": changes},
            ]
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if classify_report_conflict(exc) is Conflict.RECEIPT:
                raise DuplicateReceiptError(receipt) from exc
            raise
        self.db.refresh(report)
        logger.info("Updated report %s (%s tracked changes)", report.report_id, len(changes))
        return report

    def delete(self, identifier: str) -> bool:
        """Delete a report. Returns whether its year counter was stepped back."""
        report = self.load(identifier)
        sequence = self.sequences.parse(report.report_id)
        year = report.created_at.year
        report_id = report.report_id
        self.db.delete(report)
        released = False
        if sequence is not None:
            released = self.sequences.release(settings.report_counter_scope, year, sequence)
        self.db.commit()
        logger.info("Deleted report %s (counter released: %s)", report_id, released)
        return released

    def repair(self, limit: int) -> dict:
        """Re-run resolution over reports that were stored with unresolved links.

        Reports never attempted come first, then the ones attempted longest ago,
        so rows that can never resolve do not hold back the rest.
        """
        stmt = (
            select(LabReport.id)
            .where(LabReport.fully_resolved.is_(False))
            .order_by(LabReport.repair_attempted_at.asc().nulls_first(), LabReport.created_at, LabReport.id)
            .limit(limit)
        )
        ids = list(self.db.execute(stmt).scalars())
        processed, updated, errors = 0, 0, []
        for report_id in ids:
            processed += 1
            try:
                report = self.db.get(LabReport, report_id)
                before = report_payload(report)
                values = self.resolve(RawReportInput.model_validate(before))
                values["patient_data"] = report.patient_data
                values["patient_name"] = report.patient_name
                for column, value in values.items():
                    setattr(report, column, value)
                if report_payload(report) != before:
                    report.updated_at = utcnow()
                    updated += 1
                report.repair_attempted_at = utcnow()
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.warning("Repair of report %s failed: %s", report_id, exc)
                errors.append({"id": report_id, "message": str(exc)})
                self._mark_repair_attempted(report_id)
        logger.info("Repair pass: %s processed, %s updated, %s errors", processed, updated, len(errors))
        return {"processed": processed, "updated": updated, "errorsCount": len(errors), "sampleErrors": errors[:5]}

    def _mark_repair_attempted(self, report_id: str) -> None:
        try:
            self.db.execute(
                update(LabReport).where(LabReport.id == report_id).values(repair_attempted_at=utcnow())
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning("Could not mark report %s as attempted: %s", report_id, exc)

    # -- existence and counts --------------------------------------------

    def exists(self, receipt_no) -> bool:
        receipt = normalize_receipt(receipt_no)
        if receipt is None:
            return False
        return self.db.execute(select(LabReport.id).where(LabReport.receipt_no == receipt).limit(1)).first() is not None

    def exists_bulk(self, receipts: list[str], start: datetime | None = None, end: datetime | None = None) -> dict:
        """`{"<receipt>-<year>": True}` for every receipt that has a report, optionally within [start, end)."""
        canonical = sorted({r for r in (normalize_receipt(value) for value in receipts) if r})
        if not canonical:
            return {}
        stmt = select(LabReport.receipt_no, LabReport.report_date, LabReport.created_at).where(
            LabReport.receipt_no.in_(canonical)
        )
        if start is not None or end is not None:
            start = start or datetime(1970, 1, 1)
            end = end or datetime(9999, 12, 31)
            stmt = stmt.where(
                or_(
                    and_(LabReport.created_at >= start, LabReport.created_at < end),
                    and_(
                        LabReport.report_date >= start.date().isoformat(),
                        LabReport.report_date < end.date().isoformat(),
                    ),
                )
            )
        found = {}
        for receipt, report_date, created_at in self.db.execute(stmt):
            year = None
            if report_date and report_date[:4].isdigit():
                year = int(report_date[:4])
            elif created_at is not None:
                year = created_at.year
            if year:
                found[f"{receipt}-{year}"] = True
        return found

    def count_total(self) -> int:
        return self.db.execute(select(func.count(LabReport.id))).scalar_one()

    def daily_count(self, day: date) -> int:
        start = datetime(day.year, day.month, day.day)
        end = start + timedelta(days=1)
        stmt = select(func.count(LabReport.id)).where(
            or_(
                and_(LabReport.created_at >= start, LabReport.created_at < end),
                LabReport.report_date == day.isoformat(),
            )
        )
        return self.db.execute(stmt).scalar_one()
