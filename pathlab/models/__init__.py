from pathlab.models.catalog import CategoryHead, ServiceHead, TestCategory, TestDefinition, TestParameter, Unit
from pathlab.models.counter import Counter
from pathlab.models.directory import Department, Doctor, DoctorRoomDirectory, Patient, Room
from pathlab.models.lab_report import LabReport
from pathlab.models.pathology import PathologyInvoice, PathologyRegistration

__all__ = [
    "CategoryHead",
    "ServiceHead",
    "TestCategory",
    "TestDefinition",
    "TestParameter",
    "Unit",
    "Counter",
    "Department",
    "Doctor",
    "DoctorRoomDirectory",
    "Patient",
    "Room",
    "LabReport",
    "PathologyInvoice",
    "PathologyRegistration",
]
