import logging
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from pathlab.models.pathology import PathologyInvoice, PathologyRegistration
from pathlab.services.normalizers import normalize_patient_type, normalize_receipt, valid_patient_type

logger = logging.getLogger(__name__)

# Billing and registration records have carried the OPD/IPD flag under several names.
_TYPE_COLUMNS = ("mode", "address_type", "patient_type")
_PATIENT_TYPE_KEYS = ("type", "mode")


def declared_type(record) -> str:
    """First non-empty OPD/IPD-ish value on an invoice or registration, normalised."""
    if record is None:
        return ""
    values = [getattr(record, column, None) for column in _TYPE_COLUMNS]
    patient = record.patient if isinstance(record.patient, dict) else {}
    values.extend(patient.get(key) for key in _PATIENT_TYPE_KEYS)
    for value in values:
        normalized = normalize_patient_type(value)
        if normalized:
            return normalized
    return ""


def decide_patient_type(invoice_type: str | None, registration_type: str | None, fallback=None) -> str:
    """Invoice beats registration beats the stored value; OPD when nothing is usable."""
    for candidate in (invoice_type, registration_type, fallback):
        valid = valid_patient_type(candidate)
        if valid:
            return valid
    return "OPD"


class AuthorityResolver:
    def __init__(self, db: Session):
        self.db = db

    def _declared_types(self, model, receipts: list[str]) -> dict[str, str]:
        rows = self.db.execute(
            select(model).where(model.receipt_number.in_(receipts)).order_by(model.id)
        ).scalars()
        found: dict[str, str] = {}
        for row in rows:
            # Lowest id wins when a receipt was registered twice.
            found.setdefault(row.receipt_number, declared_type(row))
        return found

    def sources(self, receipts: Iterable) -> dict[str, tuple[str, str]]:
        """Map each canonical receipt to its (invoice type, registration type)."""
        canonical = sorted({r for r in (normalize_receipt(value) for value in receipts) if r})
        if not canonical:
            return {}
        invoice_types = self._declared_types(PathologyInvoice, canonical)
        registration_types = self._declared_types(PathologyRegistration, canonical)
        return {
            receipt: (invoice_types.get(receipt, ""), registration_types.get(receipt, ""))
            for receipt in canonical
        }

    def resolve(self, receipt_no, fallback=None) -> str:
        receipt = normalize_receipt(receipt_no)
        if receipt is None:
            return decide_patient_type(None, None, fallback)
        invoice_type, registration_type = self.sources([receipt]).get(receipt, ("", ""))
        resolved = decide_patient_type(invoice_type, registration_type, fallback)
        if invoice_type in ("OPD", "IPD") and registration_type in ("OPD", "IPD") and invoice_type != registration_type:
            logger.info(
                "Receipt %s: invoice says %s, registration says %s; invoice wins",
                receipt,
                invoice_type,
                registration_type,
            )
        return resolved

    def resolve_many(self, pairs: Iterable[tuple[str | None, str | None]]) -> list[str]:
        """Resolve a batch of (receipt, stored type) pairs with two queries in total."""
        pairs = list(pairs)
        known = self.sources(receipt for receipt, _ in pairs)
        resolved = []
        for receipt, stored in pairs:
            invoice_type, registration_type = known.get(normalize_receipt(receipt) or "", ("", ""))
            resolved.append(decide_patient_type(invoice_type, registration_type, stored))
        return resolved
