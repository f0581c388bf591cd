"""Grouped, paginated report listing.

Rows are joined to their registration to get the collection date (falling back
to the creation time). Grouping by receipt, sorting and paging run in the
database; full rows are loaded only for the groups on the requested page.
The patient type shown for each group always comes from the authority sources,
so a stale stored value is corrected on read.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import Integer, case, cast, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pathlab.database import utcnow
from pathlab.models.lab_report import LabReport
from pathlab.models.pathology import PathologyRegistration
from pathlab.services.authority import AuthorityResolver
from pathlab.services.normalizers import normalize_receipt, valid_patient_type
from pathlab.services.payloads import populate_test_refs, report_payload

logger = logging.getLogger(__name__)

DATE_FORMATS = ("%Y-%m-%d", "%d-%m-%Y", "%m/%d/%Y", "%m/%d/%y")

# Rows without a receipt form a group of their own.
GROUP_KEY = func.coalesce(LabReport.receipt_no, LabReport.id)


def parse_date(value: str | None) -> date | None:
    if not value:
        return None
    value = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        return None


@dataclass
class ReportFilters:
    page: int = 1
    limit: int = 50
    receipt: str | None = None
    lab_yearly_no: str | None = None
    q: str | None = None
    search_type: str | None = None
    particular_date: str | None = None
    date_from: str | None = None
    date_to: str | None = None
    month: str | None = None
    patient_type: str | None = None
    enrich: bool = False

    def date_window(self, today: date | None = None) -> tuple[datetime | None, datetime | None]:
        """Half-open [start, end) on the registration date; `dateTo` is inclusive of its day."""
        if self.particular_date:
            day = parse_date(self.particular_date)
            if day is None:
                return None, None
            start = datetime(day.year, day.month, day.day)
            return start, start + timedelta(days=1)

        start_day, end_day = parse_date(self.date_from), parse_date(self.date_to)
        if self.month and start_day is None and end_day is None:
            month = int(self.month) if str(self.month).strip().isdigit() else 0
            if 1 <= month <= 12:
                year = (today or utcnow().date()).year
                start_day = date(year, month, 1)
                end_day = date(year + (month == 12), month % 12 + 1, 1) - timedelta(days=1)
        start = datetime(start_day.year, start_day.month, start_day.day) if start_day else None
        end = datetime(end_day.year, end_day.month, end_day.day) + timedelta(days=1) if end_day else None
        return start, end


def group_key(receipt_no: str | None, report_id: str) -> str:
    return receipt_no if receipt_no is not None else report_id


def lab_daily_number(value) -> int:
    text = str(value or "").strip()
    return int(text) if text.isdigit() else 0


class ReportListing:
    def __init__(self, db: Session):
        self.db = db
        self.authority = AuthorityResolver(db)

    @staticmethod
    def _registered_at():
        registrations = (
            select(
                PathologyRegistration.receipt_number.label("receipt"),
                func.max(PathologyRegistration.registration_date).label("registered_at"),
            )
            .group_by(PathologyRegistration.receipt_number)
            .subquery()
        )
        return registrations, func.coalesce(registrations.c.registered_at, LabReport.created_at)

    @staticmethod
    def _filtered(stmt, registered_at, filters: ReportFilters):
        receipt = normalize_receipt(filters.receipt)
        if receipt:
            stmt = stmt.where(LabReport.receipt_no == receipt)
        if filters.lab_yearly_no and filters.lab_yearly_no.strip():
            stmt = stmt.where(LabReport.lab_yearly_no.istartswith(filters.lab_yearly_no.strip(), autoescape=True))
        q = (filters.q or "").strip()
        if q and filters.search_type in (None, "", "patientName"):
            stmt = stmt.where(LabReport.patient_name.icontains(q, autoescape=True))
        start, end = filters.date_window()
        if start is not None:
            stmt = stmt.where(registered_at >= start)
        if end is not None:
            stmt = stmt.where(registered_at < end)
        return stmt

    def _group_heads(self, filters: ReportFilters):
        """One row per receipt group (its latest-registered member), in display order.

        Only the columns needed to sort, count and resolve the type are read here;
        test lists are loaded later for the groups on the requested page.
        """
        registrations, registered_at = self._registered_at()
        latest_first = (registered_at.desc(), LabReport.created_at.desc(), LabReport.id.desc())
        members = self._filtered(
            select(
                GROUP_KEY.label("group_key"),
                LabReport.receipt_no,
                LabReport.patient_type,
                LabReport.lab_daily_no,
                LabReport.created_at,
                registered_at.label("registered_at"),
                func.row_number().over(partition_by=GROUP_KEY, order_by=latest_first).label("newest_rank"),
            ).outerjoin(registrations, registrations.c.receipt == LabReport.receipt_no),
            registered_at,
            filters,
        ).subquery()

        numeric_daily = case(
            (members.c.lab_daily_no.regexp_match(r"^\s*[0-9]+\s*$"), cast(func.trim(members.c.lab_daily_no), Integer)),
            else_=0,
        )
        heads = select(members.c.group_key, members.c.receipt_no, members.c.patient_type).where(
            members.c.newest_rank == 1
        )
        order = (
            func.date(members.c.registered_at).desc(),
            numeric_daily,
            members.c.created_at.desc(),
            members.c.group_key,
        )
        return heads, order

    def _load_groups(self, keys: list[str], filters: ReportFilters) -> list[dict]:
        """Full payloads for `keys`, in the same order. Scalars come from the most recently registered row."""
        if not keys:
            return []
        registrations, registered_at = self._registered_at()
        stmt = self._filtered(
            select(LabReport, registered_at.label("registered_at"))
            .outerjoin(registrations, registrations.c.receipt == LabReport.receipt_no)
            .where(GROUP_KEY.in_(keys)),
            registered_at,
            filters,
        )
        grouped: dict[str, list[tuple[LabReport, datetime]]] = defaultdict(list)
        for report, registered in self.db.execute(stmt).tuples():
            grouped[group_key(report.receipt_no, report.id)].append((report, registered or report.created_at))

        groups = []
        for key in keys:
            members = grouped.get(key)
            if not members:
                continue
            canonical, registered = max(members, key=lambda m: (m[1], m[0].created_at, m[0].id))
            in_creation_order = sorted((m[0] for m in members), key=lambda r: (r.created_at, r.id))
            payload = report_payload(canonical)
            payload["testResults"] = [line for row in in_creation_order for line in (row.test_results or [])]
            payload["registrationDate"] = registered.isoformat() if registered else None
            payload["originalReportCount"] = len(members)
            groups.append(payload)
        return groups

    def resolved_types(self, pairs: list[tuple[str | None, str | None]]) -> list[str | None]:
        """Authoritative type per (receipt, stored type); the stored types when the sources are unreachable."""
        try:
            return self.authority.resolve_many(pairs)
        except SQLAlchemyError as exc:
            logger.warning("Authority lookup failed for %s groups, keeping stored types: %s", len(pairs), exc)
            self.db.rollback()
            return [stored for _, stored in pairs]

    def list(self, filters: ReportFilters) -> tuple[list[dict], dict]:
        heads, order = self._group_heads(filters)
        offset = (filters.page - 1) * filters.limit

        wanted = valid_patient_type(filters.patient_type)
        if wanted:
            # Filter on the resolved type before paging so counts match what is shown.
            rows = self.db.execute(heads.order_by(*order)).all()
            types = self.resolved_types([(row.receipt_no, row.patient_type) for row in rows])
            matching = [(row.group_key, kind) for row, kind in zip(rows, types) if kind == wanted]
            total = len(matching)
            page_types = dict(matching[offset : offset + filters.limit])
        else:
            total = self.db.execute(select(func.count()).select_from(heads.subquery())).scalar_one()
            rows = self.db.execute(heads.order_by(*order).offset(offset).limit(filters.limit)).all()
            types = self.resolved_types([(row.receipt_no, row.patient_type) for row in rows])
            page_types = {row.group_key: kind for row, kind in zip(rows, types)}

        page = self._load_groups(list(page_types), filters)
        for group in page:
            group["patientType"] = page_types[group_key(group["receiptNo"], group["id"])]

        if filters.enrich:
            page = populate_test_refs(self.db, page)

        total_pages = max(1, math.ceil(total / filters.limit))
        pagination = {
            "currentPage": filters.page,
            "totalPages": total_pages,
            "totalReports": total,
            "hasNext": filters.page < total_pages,
            "hasPrev": filters.page > 1,
        }
        return page, pagination
