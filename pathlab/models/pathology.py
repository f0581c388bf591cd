from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pathlab.database import Base, utcnow


class PathologyInvoice(Base):
    """Cash receipt issued by billing. Read-only here."""

    __tablename__ = "pathology_invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    receipt_number: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    mode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    address_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    patient_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    patient: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    department_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    doctor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    doctor_room_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    registration_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class PathologyRegistration(Base):
    """Sample registration at the lab counter. Read-only here."""

    __tablename__ = "pathology_registrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    receipt_number: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    mode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    address_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    patient_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    patient: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    registration_date: Mapped[datetime | None] = mapped_column(DateTime, index=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
