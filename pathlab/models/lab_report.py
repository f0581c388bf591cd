from datetime import datetime
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from pathlab.database import Base, utcnow


class LabReport(Base):
    __tablename__ = "lab_reports"
    __table_args__ = (
        # Rows imported before receipt uniqueness existed may share a receipt.
        Index(
            "uq_lab_reports_receipt_no",
            "receipt_no",
            unique=True,
            sqlite_where=text("legacy = 0"),
            postgresql_where=text("legacy IS FALSE"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    report_id: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    receipt_no: Mapped[str | None] = mapped_column(String(32), index=True, nullable=True)
    registration_no: Mapped[str | None] = mapped_column(String(50), nullable=True)
    lab_yearly_no: Mapped[str | None] = mapped_column(String(50), index=True, nullable=True)
    lab_daily_no: Mapped[str | None] = mapped_column(String(50), nullable=True)
    lab_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    room_no: Mapped[str | None] = mapped_column(String(50), nullable=True)
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    doctor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    doctor_ref_no: Mapped[str | None] = mapped_column(String(50), nullable=True)

    patient_ref: Mapped[int | None] = mapped_column(Integer, nullable=True)
    department_ref: Mapped[int | None] = mapped_column(Integer, nullable=True)
    doctor_ref: Mapped[int | None] = mapped_column(Integer, nullable=True)
    room_ref: Mapped[int | None] = mapped_column(Integer, nullable=True)
    invoice_ref: Mapped[int | None] = mapped_column(Integer, nullable=True)
    registration_ref: Mapped[int | None] = mapped_column(Integer, nullable=True)

    patient_type: Mapped[str] = mapped_column(String(3), nullable=False, default="OPD")
    patient_name: Mapped[str] = mapped_column(String(255), index=True, nullable=False, default="")
    patient_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    test_results: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    report_date: Mapped[str | None] = mapped_column(String(10), index=True, nullable=True)
    report_status: Mapped[str] = mapped_column(String(30), nullable=False, default="Completed")

    unresolved_fields: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    fully_resolved: Mapped[bool] = mapped_column(Boolean, index=True, nullable=False, default=False)
    repair_attempted_at: Mapped[datetime | None] = mapped_column(DateTime, index=True, nullable=True)
    legacy: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True, nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False, default="System")
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    is_edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_edited_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_edited_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    edit_history: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
