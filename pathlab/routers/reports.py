from datetime import datetime

from fastapi import APIRouter, Depends, Query

from pathlab.config import settings
from pathlab.database import utcnow
from pathlab.routers.deps import get_assembler, get_listing
from pathlab.schemas.lab_report import RawReportInput
from pathlab.services.assembler import ReportAssembler
from pathlab.services.listing import ReportFilters, ReportListing, parse_date
from pathlab.services.payloads import populate_test_refs, report_payload

router = APIRouter(prefix="/reports", tags=["reports"])


def _bounded(value: int | None, default: int, maximum: int) -> int:
    return min(value or default, maximum)


@router.post("", status_code=201)
def create_report(payload: RawReportInput, assembler: ReportAssembler = Depends(get_assembler)):
    report = assembler.create(payload)
    return {
        "statusCode": 201,
        "message": "Pathology report created successfully",
        "reportId": report.report_id,
        "data": report_payload(report),
    }


@router.get("")
def list_reports(
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    receipt: str | None = Query(default=None),
    receipt_no: str | None = Query(default=None, alias="receiptNo"),
    lab_yearly_no: str | None = Query(default=None, alias="labYearlyNo"),
    q: str | None = Query(default=None),
    search_type: str | None = Query(default=None, alias="searchType"),
    particular_date: str | None = Query(default=None, alias="particularDate"),
    date: str | None = Query(default=None),
    date_from: str | None = Query(default=None, alias="dateFrom"),
    date_to: str | None = Query(default=None, alias="dateTo"),
    month: str | None = Query(default=None),
    patient_type: str | None = Query(default=None, alias="patientType"),
    type_: str | None = Query(default=None, alias="type"),
    enrich: bool = Query(default=False),
    listing: ReportListing = Depends(get_listing),
):
    filters = ReportFilters(
        page=page,
        limit=_bounded(limit, settings.list_default_limit, settings.list_max_limit),
        receipt=receipt or receipt_no,
        lab_yearly_no=lab_yearly_no,
        q=q,
        search_type=search_type,
        particular_date=particular_date or date,
        date_from=date_from,
        date_to=date_to,
        month=month,
        patient_type=patient_type or type_,
        enrich=enrich,
    )
    reports, pagination = listing.list(filters)
    return {"statusCode": 200, "message": "Success", "data": reports, "pagination": pagination}


@router.get("/count-total")
def count_total(assembler: ReportAssembler = Depends(get_assembler)):
    return {"statusCode": 200, "message": "Success", "data": {"totalReports": assembler.count_total()}}


@router.get("/daily-count")
def daily_count(date: str | None = Query(default=None), assembler: ReportAssembler = Depends(get_assembler)):
    day = parse_date(date) or utcnow().date()
    return {
        "statusCode": 200,
        "message": "Success",
        "data": {"count": assembler.daily_count(day), "date": day.isoformat()},
    }


@router.get("/exists")
def report_exists(
    receipt_no: str | None = Query(default=None, alias="receiptNo"),
    receipt: str | None = Query(default=None),
    assembler: ReportAssembler = Depends(get_assembler),
):
    return {"statusCode": 200, "message": "Success", "data": {"exists": assembler.exists(receipt_no or receipt)}}


@router.get("/exists-bulk")
def reports_exist_bulk(
    receipts: str | None = Query(default=None),
    year: int | None = Query(default=None),
    date_from: str | None = Query(default=None, alias="from"),
    date_to: str | None = Query(default=None, alias="to"),
    assembler: ReportAssembler = Depends(get_assembler),
):
    start = end = None
    if year is not None:
        start, end = datetime(year, 1, 1), datetime(year + 1, 1, 1)
    else:
        from_day, to_day = parse_date(date_from), parse_date(date_to)
        if from_day:
            start = datetime(from_day.year, from_day.month, from_day.day)
        if to_day:
            end = datetime(to_day.year, to_day.month, to_day.day)
    values = [value.strip() for value in (receipts or "").split(",") if value.strip()]
    return {
        "statusCode": 200,
        "message": "Success",
        "data": {"existsByReceiptYear": assembler.exists_bulk(values, start, end)},
    }


@router.get("/by-receipt/{receipt_no}")
def get_reports_by_receipt(receipt_no: str, assembler: ReportAssembler = Depends(get_assembler)):
    report, count = assembler.by_receipt(receipt_no)
    return {"statusCode": 200, "message": "Success", "data": report, "originalReportCount": count}


@router.post("/admin/repair-links")
def repair_links(limit: int | None = Query(default=None, ge=1), assembler: ReportAssembler = Depends(get_assembler)):
    summary = assembler.repair(_bounded(limit, settings.repair_default_limit, settings.repair_max_limit))
    return {"statusCode": 200, "message": "Repair finished", "data": summary}


@router.get("/{report_id}")
def get_report(
    report_id: str,
    populate: bool = Query(default=False),
    assembler: ReportAssembler = Depends(get_assembler),
):
    report = assembler.get(report_id)
    if populate:
        report = populate_test_refs(assembler.db, [report])[0]
    return {"statusCode": 200, "message": "Success", "data": report}


@router.put("/{report_id}")
def update_report(report_id: str, payload: RawReportInput, assembler: ReportAssembler = Depends(get_assembler)):
    report = assembler.update(report_id, payload)
    return {"statusCode": 200, "message": "Pathology report updated successfully", "data": report_payload(report)}


@router.delete("/{report_id}")
def delete_report(report_id: str, assembler: ReportAssembler = Depends(get_assembler)):
    released = assembler.delete(report_id)
    return {
        "statusCode": 200,
        "message": "Pathology report deleted successfully",
        "data": {"counterReleased": released},
    }
