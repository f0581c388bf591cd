"""report engine schema

Revision ID: 0001_report_engine_schema
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0001_report_engine_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "test_categories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("category_code", sa.String(length=50), nullable=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_test_categories_name", "test_categories", ["name"], unique=True)

    op.create_table(
        "category_heads",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("category_name", sa.String(length=100), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "service_heads",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("category_head_id", sa.Integer(), nullable=True),
        sa.Column("test_name", sa.String(length=255), nullable=False),
        sa.Column("price", sa.String(length=20), nullable=True),
        sa.ForeignKeyConstraint(["category_head_id"], ["category_heads.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_service_heads_test_name", "service_heads", ["test_name"], unique=False)

    op.create_table(
        "units",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "test_definitions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("short_name", sa.String(length=255), nullable=True),
        sa.Column("test_type", sa.String(length=20), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("service_head_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["category_id"], ["test_categories.id"]),
        sa.ForeignKeyConstraint(["service_head_id"], ["service_heads.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_test_definitions_name", "test_definitions", ["name"], unique=False)

    op.create_table(
        "test_parameters",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("definition_id", sa.Integer(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("unit_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["definition_id"], ["test_definitions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_test_parameters_definition_id", "test_parameters", ["definition_id"], unique=False)

    op.create_table(
        "patients",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("patient_code", sa.String(length=50), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_patients_patient_code", "patients", ["patient_code"], unique=True)

    op.create_table(
        "departments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "doctors",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "rooms",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("room_number", sa.String(length=50), nullable=False),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_rooms_room_number", "rooms", ["room_number"], unique=True)

    op.create_table(
        "doctor_room_directory",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("doctor_id", sa.Integer(), nullable=False),
        sa.Column("room_id", sa.Integer(), nullable=False),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"]),
        sa.ForeignKeyConstraint(["room_id"], ["rooms.id"]),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_doctor_room_directory_room_id", "doctor_room_directory", ["room_id"], unique=False)

    for table in ("pathology_invoices", "pathology_registrations"):
        columns = [
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("receipt_number", sa.String(length=32), nullable=False),
            sa.Column("mode", sa.String(length=20), nullable=True),
            sa.Column("address_type", sa.String(length=20), nullable=True),
            sa.Column("patient_type", sa.String(length=20), nullable=True),
            sa.Column("patient", sa.JSON(), nullable=True),
        ]
        if table == "pathology_invoices":
            columns += [
                sa.Column("department_name", sa.String(length=255), nullable=True),
                sa.Column("doctor_name", sa.String(length=255), nullable=True),
                sa.Column("doctor_room_number", sa.String(length=50), nullable=True),
            ]
        columns += [
            sa.Column("registration_date", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        ]
        op.create_table(table, *columns)
        op.create_index(f"ix_{table}_receipt_number", table, ["receipt_number"], unique=False)
    op.create_index(
        "ix_pathology_registrations_registration_date",
        "pathology_registrations",
        ["registration_date"],
        unique=False,
    )

    op.create_table(
        "counters",
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("value", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )

    op.create_table(
        "lab_reports",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("report_id", sa.String(length=20), nullable=False),
        sa.Column("receipt_no", sa.String(length=32), nullable=True),
        sa.Column("registration_no", sa.String(length=50), nullable=True),
        sa.Column("lab_yearly_no", sa.String(length=50), nullable=True),
        sa.Column("lab_daily_no", sa.String(length=50), nullable=True),
        sa.Column("lab_number", sa.String(length=50), nullable=True),
        sa.Column("room_no", sa.String(length=50), nullable=True),
        sa.Column("department", sa.String(length=255), nullable=True),
        sa.Column("doctor", sa.String(length=255), nullable=True),
        sa.Column("doctor_ref_no", sa.String(length=50), nullable=True),
        sa.Column("patient_ref", sa.Integer(), nullable=True),
        sa.Column("department_ref", sa.Integer(), nullable=True),
        sa.Column("doctor_ref", sa.Integer(), nullable=True),
        sa.Column("room_ref", sa.Integer(), nullable=True),
        sa.Column("invoice_ref", sa.Integer(), nullable=True),
        sa.Column("registration_ref", sa.Integer(), nullable=True),
        sa.Column("patient_type", sa.String(length=3), nullable=False),
        sa.Column("patient_name", sa.String(length=255), nullable=False),
        sa.Column("patient_data", sa.JSON(), nullable=False),
        sa.Column("test_results", sa.JSON(), nullable=False),
        sa.Column("report_date", sa.String(length=10), nullable=True),
        sa.Column("report_status", sa.String(length=30), nullable=False),
        sa.Column("unresolved_fields", sa.JSON(), nullable=False),
        sa.Column("fully_resolved", sa.Boolean(), nullable=False),
        sa.Column("legacy", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("created_by", sa.String(length=100), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("is_edited", sa.Boolean(), nullable=False),
        sa.Column("last_edited_at", sa.DateTime(), nullable=True),
        sa.Column("last_edited_by", sa.String(length=100), nullable=True),
        sa.Column("edit_history", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_lab_reports_report_id", "lab_reports", ["report_id"], unique=True)
    op.create_index("ix_lab_reports_receipt_no", "lab_reports", ["receipt_no"], unique=False)
    op.create_index("ix_lab_reports_lab_yearly_no", "lab_reports", ["lab_yearly_no"], unique=False)
    op.create_index("ix_lab_reports_patient_name", "lab_reports", ["patient_name"], unique=False)
    op.create_index("ix_lab_reports_report_date", "lab_reports", ["report_date"], unique=False)
    op.create_index("ix_lab_reports_fully_resolved", "lab_reports", ["fully_resolved"], unique=False)
    op.create_index("ix_lab_reports_created_at", "lab_reports", ["created_at"], unique=False)
    op.create_index(
        "uq_lab_reports_receipt_no",
        "lab_reports",
        ["receipt_no"],
        unique=True,
        sqlite_where=sa.text("legacy = 0"),
        postgresql_where=sa.text("legacy IS FALSE"),
    )


def downgrade() -> None:
    op.drop_index("uq_lab_reports_receipt_no", table_name="lab_reports")
    for index in (
        "ix_lab_reports_created_at",
        "ix_lab_reports_fully_resolved",
        "ix_lab_reports_report_date",
        "ix_lab_reports_patient_name",
        "ix_lab_reports_lab_yearly_no",
        "ix_lab_reports_receipt_no",
        "ix_lab_reports_report_id",
    ):
        op.drop_index(index, table_name="lab_reports")
    op.drop_table("lab_reports")
    op.drop_table("counters")
    op.drop_index("ix_pathology_registrations_registration_date", table_name="pathology_registrations")
    for table in ("pathology_registrations", "pathology_invoices"):
        op.drop_index(f"ix_{table}_receipt_number", table_name=table)
        op.drop_table(table)
    op.drop_index("ix_doctor_room_directory_room_id", table_name="doctor_room_directory")
    op.drop_table("doctor_room_directory")
    op.drop_index("ix_rooms_room_number", table_name="rooms")
    op.drop_table("rooms")
    op.drop_table("doctors")
    op.drop_table("departments")
    op.drop_index("ix_patients_patient_code", table_name="patients")
    op.drop_table("patients")
    op.drop_index("ix_test_parameters_definition_id", table_name="test_parameters")
    op.drop_table("test_parameters")
    op.drop_index("ix_test_definitions_name", table_name="test_definitions")
    op.drop_table("test_definitions")
    op.drop_table("units")
    op.drop_index("ix_service_heads_test_name", table_name="service_heads")
    op.drop_table("service_heads")
    op.drop_table("category_heads")
    op.drop_index("ix_test_categories_name", table_name="test_categories")
    op.drop_table("test_categories")
