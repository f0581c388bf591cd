import logging
import re

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from pathlab.config import settings
from pathlab.database import utcnow
from pathlab.models.counter import Counter

logger = logging.getLogger(__name__)

_UPSERT_BUILDERS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SequenceGenerator:
    """Per-year counters producing ids like `RPT000042`.

    Every increment is a single `INSERT .. ON CONFLICT DO UPDATE .. RETURNING`
    statement committed on its own, so two requests never read the same value.
    """

    def __init__(self, db: Session, prefix: str | None = None, padding: int | None = None):
        self.db = db
        self.prefix = prefix if prefix is not None else settings.report_id_prefix
        self.padding = padding if padding is not None else settings.report_id_padding

    @staticmethod
    def counter_name(scope: str, year: int | None = None) -> str:
        return f"{scope}_{year if year is not None else utcnow().year}"

    def format(self, sequence: int) -> str:
        return f"{self.prefix}{sequence:0{self.padding}d}"

    @staticmethod
    def parse(formatted: str | None) -> int | None:
        digits = re.sub(r"\D", "", formatted or "")
        return int(digits) if digits else None

    def next(self, scope: str, year: int | None = None) -> tuple[int, str]:
        name = self.counter_name(scope, year)
        dialect = self.db.get_bind().dialect.name
        try:
            insert = _UPSERT_BUILDERS[dialect]
        except KeyError as exc:
            raise RuntimeError(f"Atomic counters are not supported on {dialect}") from exc

        stmt = insert(Counter).values(name=name, value=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Counter.name],
            set_={"value": Counter.value + 1},
        ).returning(Counter.value)
        sequence = self.db.execute(stmt).scalar_one()
        self.db.commit()
        logger.debug("Counter %s -> %s", name, sequence)
        return sequence, self.format(sequence)

    def bump(self, scope: str, year: int | None = None) -> int:
        """Force the counter past a value that turned out to be taken."""
        name = self.counter_name(scope, year)
        stmt = (
            update(Counter)
            .where(Counter.name == name)
            .values(value=Counter.value + 1)
            .returning(Counter.value)
        )
        sequence = self.db.execute(stmt).scalar_one_or_none()
        if sequence is None:
            sequence, _ = self.next(scope, year)
            return sequence
        self.db.commit()
        logger.info("Counter %s bumped to %s", name, sequence)
        return sequence

    def current(self, scope: str, year: int | None = None) -> int:
        name = self.counter_name(scope, year)
        value = self.db.execute(select(Counter.value).where(Counter.name == name)).scalar_one_or_none()
        return value or 0

    def release(self, scope: str, year: int, sequence: int) -> bool:
        """Step the counter back once if `sequence` is its current value.

        Left to the caller's transaction; returns whether the counter moved.
        """
        name = self.counter_name(scope, year)
        result = self.db.execute(
            update(Counter)
            .where(Counter.name == name, Counter.value == sequence, Counter.value > 0)
            .values(value=Counter.value - 1)
        )
        released = result.rowcount == 1
        if released:
            logger.info("Counter %s stepped back from %s", name, sequence)
        return released
