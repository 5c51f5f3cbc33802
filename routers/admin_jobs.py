from fastapi import APIRouter, Depends
from pymongo.database import Database

from database import get_db
from jobs import AuctionJobs
from notifications import Notifier, get_notifier
from schemas import Role
from security import CurrentUser, require_roles

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("/settle")
def run_settlement(
    _: CurrentUser = Depends(require_roles(Role.ADMIN)),
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Settle every ended artwork now instead of waiting for the next tick"""
    summary = AuctionJobs(db, notifier).settle_ended_artworks()
    return {"success": True, "summary": summary.as_dict()}


@router.post("/ending-soon")
def run_ending_soon(
    _: CurrentUser = Depends(require_roles(Role.ADMIN)),
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    processed = AuctionJobs(db, notifier).notify_ending_soon()
    return {"success": True, "artworks": processed}
