"""
Notification dispatch for bids, settlement and account events.

Notifier methods never raise: each recipient is sent to independently, and
the outcome is collected in a DispatchReport that is logged. Request handlers
hand these calls to FastAPI BackgroundTasks so email delivery can neither
delay nor fail the response.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo.database import Database

import email_service
from bidding import BID_ORDER
from database import ref_id
from email_service import EmailService
from logger import logger


@dataclass
class DispatchReport:
    event: str
    sent: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def log(self) -> "DispatchReport":
        if self.failed:
            logger.warning("[notify] %s: sent=%d failed=%s", self.event, len(self.sent), self.failed)
        else:
            logger.info("[notify] %s: sent=%d", self.event, len(self.sent))
        return self


def find_user(db: Database, user_id: Any) -> Optional[Dict[str, Any]]:
    uid = ref_id(user_id)
    if not ObjectId.is_valid(uid):
        return None
    return db["user"].find_one({"_id": ObjectId(uid)})


class Notifier:
    def __init__(self, mailer: Optional[EmailService] = None):
        self.mailer = mailer or EmailService()

    def _deliver(self, report: DispatchReport, user: Dict[str, Any], message: Tuple[str, str]) -> None:
        address = user.get("email")
        if not address:
            logger.warning("[notify] %s: user %s has no email address", report.event, user.get("_id"))
            report.failed.append(str(user.get("_id")))
            return
        subject, html = message
        try:
            self.mailer.send(address, subject, html)
            report.sent.append(address)
        except Exception as exc:
            logger.error("[notify] %s: failed to email %s: %s", report.event, address, exc)
            report.failed.append(address)

    def bid_placed(self, db: Database, offer: Dict[str, Any], artwork: Dict[str, Any], auction: Dict[str, Any]) -> DispatchReport:
        """Confirm the bid, tell the previous leader they were outbid, confirm the lead"""
        report = DispatchReport("bid_placed")
        try:
            bidder = find_user(db, offer["userId"])
            if not bidder:
                logger.error("[notify] bidder %s not found", ref_id(offer["userId"]))
                return report.log()

            artwork_data = {**artwork, "auctionTitle": auction.get("title", "Auction")}
            bidder_id = str(bidder["_id"])
            name = bidder.get("userName", "")
            self._deliver(report, bidder, email_service.bid_placed_email(name, artwork_data, offer["amount"]))

            top_bids = list(db["offer"].find({"artworkId": str(artwork["_id"])}).sort(BID_ORDER).limit(10))
            if not top_bids or ref_id(top_bids[0]["userId"]) != bidder_id:
                return report.log()
            leading = top_bids[0]

            previous = next((b for b in top_bids[1:] if ref_id(b["userId"]) != bidder_id), None)
            if previous:
                previous_bidder = find_user(db, previous["userId"])
                if previous_bidder:
                    self._deliver(
                        report,
                        previous_bidder,
                        email_service.outbid_email(
                            previous_bidder.get("userName", ""), artwork_data, previous["amount"], leading["amount"]
                        ),
                    )

            self._deliver(report, bidder, email_service.leading_bid_email(name, artwork_data, leading["amount"]))
        except Exception as exc:
            logger.error("[notify] bid_placed failed for artwork %s: %s", artwork.get("_id"), exc, exc_info=True)
            report.failed.append("*")
        return report.log()

    def auction_won(self, winner: Dict[str, Any], artwork: Dict[str, Any], amount: float) -> DispatchReport:
        report = DispatchReport("auction_won")
        self._deliver(report, winner, email_service.auction_won_email(winner.get("userName", ""), artwork, amount))
        return report.log()

    def auction_lost(self, user: Dict[str, Any], artwork: Dict[str, Any], bid: float, winning_amount: float) -> DispatchReport:
        report = DispatchReport("auction_lost")
        self._deliver(
            report, user, email_service.auction_lost_email(user.get("userName", ""), artwork, bid, winning_amount)
        )
        return report.log()

    def ending_soon(self, user: Dict[str, Any], artwork: Dict[str, Any], bid: float) -> DispatchReport:
        report = DispatchReport("ending_soon")
        self._deliver(report, user, email_service.ending_soon_email(user.get("userName", ""), artwork, bid))
        return report.log()

    def verification(self, user: Dict[str, Any], token: str) -> DispatchReport:
        report = DispatchReport("verification")
        self._deliver(report, user, email_service.verification_email(user.get("userName", ""), token))
        return report.log()


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    """FastAPI dependency returning the process-wide notifier"""
    global _notifier
    if _notifier is None:
        _notifier = Notifier()
    return _notifier
