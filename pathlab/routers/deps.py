from fastapi import Depends, Header
from sqlalchemy.orm import Session

from pathlab.database import get_db
from pathlab.services.assembler import ReportAssembler
from pathlab.services.listing import ReportListing


def get_actor(x_user: str | None = Header(default=None)) -> str:
    # Authentication happens upstream; it forwards the acting user in X-User.
    actor = (x_user or "").strip()
    return actor or "System"


def get_assembler(db: Session = Depends(get_db), actor: str = Depends(get_actor)) -> ReportAssembler:
    return ReportAssembler(db, actor=actor)


def get_listing(db: Session = Depends(get_db)) -> ReportListing:
    return ReportListing(db)
