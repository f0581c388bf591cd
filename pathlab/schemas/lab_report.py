from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class RawParameter(CamelModel):
    """One submitted parameter row of a test; result fields beyond these are kept as sent."""
    name: str | None = None
    result: Any = None
    parameter_ref: int | None = None
    unit_ref: int | None = None


class RawTestLine(CamelModel):
    """A submitted test as typed at the counter."""
    test_name: str = ""
    category: str | None = None
    parameters: list[RawParameter] = Field(default_factory=list)
    test_definition_ref: int | None = None
    category_ref: int | None = None
    service_ref: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_name_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("testName") and not data.get("test_name") and data.get("name"):
            data = {**data, "testName": data["name"]}
        return data

    @field_validator("test_name", mode="before")
    @classmethod
    def _name_to_str(cls, value: Any) -> str:
        return "" if value is None else str(value)


class ResolvedParameter(CamelModel):
    name: str | None = None
    parameter_ref: int | None = None
    unit_ref: int | None = None


class ResolvedTestLine(CamelModel):
    test_name: str
    category: str = ""
    test_definition_ref: int | None = None
    category_ref: int | None = None
    service_ref: int | None = None
    parameters: list[ResolvedParameter] = Field(default_factory=list)


class PatientSnapshot(CamelModel):
    """Patient demographics copied onto the report at write time."""
    first_name: str | None = None
    last_name: str | None = None
    full_name: str | None = None
    age: Any = None
    age_in: str | None = None
    gender: str | None = None
    phone: str | None = None
    address: str | None = None
    aadhaar: str | None = None
    registration_number: str | None = None
    patient_id: str | None = None
    registration_mode: str | None = None
    mode: str | None = None


_IDENTIFIER_FIELDS = (
    "receipt_no",
    "registration_no",
    "lab_yearly_no",
    "lab_daily_no",
    "lab_number",
    "room_no",
    "doctor_ref_no",
)


class RawReportInput(CamelModel):
    """Body of POST and PUT /reports. Every field is optional; the assembler decides what is required."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    receipt_no: str | None = None
    registration_no: str | None = None
    lab_yearly_no: str | None = None
    lab_daily_no: str | None = None
    lab_number: str | None = None
    room_no: str | None = None
    department: str | None = None
    doctor: str | None = None
    doctor_ref_no: str | None = None
    patient_type: str | None = None
    mode: str | None = None
    address_type: str | None = None
    patient_data: PatientSnapshot | None = None
    test_results: list[RawTestLine] | None = None
    report_date: str | None = None
    report_status: str | None = None
    created_by: str | None = None
    edited_by: str | None = None
    updated_by: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("room") is not None and data.get("roomNo") is None:
            data["roomNo"] = data["room"]
        if data.get("type") and not data.get("patientType"):
            data["patientType"] = data["type"]
        return data

    @field_validator(*_IDENTIFIER_FIELDS, mode="before")
    @classmethod
    def _identifier_to_str(cls, value: Any) -> str | None:
        if value is None:
            return None
        value = str(value).strip()
        return value or None
