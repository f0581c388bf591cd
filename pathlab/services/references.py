from typing import NamedTuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pathlab.models.directory import Department, Doctor, DoctorRoomDirectory, Patient, Room
from pathlab.models.pathology import PathologyInvoice, PathologyRegistration
from pathlab.services.normalizers import looks_like_primary_key, normalize_receipt, normalize_room_number


class Lookup(NamedTuple):
    value: int | None
    resolved: bool


MISS = Lookup(None, False)


def hit(value: int) -> Lookup:
    return Lookup(value, True)


class ReferenceResolver:
    """Resolves free-text identifiers to master-data primary keys.

    Strategies run in a fixed order and the first hit wins: primary key when
    the input is all digits, then case-insensitive name, then case-insensitive
    code. A miss is an ordinary result, not an error.
    """

    def __init__(self, db: Session):
        self.db = db

    def _first_id(self, model, *clauses) -> int | None:
        stmt = select(model.id).where(*clauses).order_by(model.id).limit(1)
        return self.db.execute(stmt).scalar_one_or_none()

    def _by_key_name_code(self, model, raw: str | None, name_col=None, code_col=None) -> Lookup:
        key = (raw or "").strip()
        if not key:
            return MISS
        if looks_like_primary_key(key):
            found = self.db.get(model, int(key))
            if found is not None:
                return hit(found.id)
        lowered = key.lower()
        for column in (name_col, code_col):
            if column is None:
                continue
            found_id = self._first_id(model, func.lower(column) == lowered)
            if found_id is not None:
                return hit(found_id)
        return MISS

    def patient(self, key: str | None) -> Lookup:
        return self._by_key_name_code(Patient, key, code_col=Patient.patient_code)

    def department(self, name: str | None) -> Lookup:
        return self._by_key_name_code(Department, name, name_col=Department.name, code_col=Department.code)

    def doctor(self, name: str | None) -> Lookup:
        return self._by_key_name_code(Doctor, name, name_col=Doctor.name)

    def room(self, room_no: str | None) -> tuple[Lookup, Lookup]:
        """Room lookup plus the doctor seated in that room, if any."""
        room_number = normalize_room_number(room_no)
        if not room_number:
            return MISS, MISS
        room_id = self._first_id(Room, func.lower(Room.room_number) == room_number.lower())
        if room_id is None:
            return MISS, MISS
        doctor_id = self.db.execute(
            select(DoctorRoomDirectory.doctor_id)
            .where(DoctorRoomDirectory.room_id == room_id)
            .order_by(DoctorRoomDirectory.id)
            .limit(1)
        ).scalar_one_or_none()
        return hit(room_id), (hit(doctor_id) if doctor_id is not None else MISS)

    def invoice(self, receipt_no: str | None) -> PathologyInvoice | None:
        receipt = normalize_receipt(receipt_no)
        if receipt is None:
            return None
        return self.db.execute(
            select(PathologyInvoice)
            .where(PathologyInvoice.receipt_number == receipt)
            .order_by(PathologyInvoice.id)
            .limit(1)
        ).scalar_one_or_none()

    def registration(self, receipt_no: str | None) -> PathologyRegistration | None:
        receipt = normalize_receipt(receipt_no)
        if receipt is None:
            return None
        return self.db.execute(
            select(PathologyRegistration)
            .where(PathologyRegistration.receipt_number == receipt)
            .order_by(PathologyRegistration.id)
            .limit(1)
        ).scalar_one_or_none()
