"""Auction-closing background jobs.

Two periodic tasks owned by AuctionJobs, started from the FastAPI startup
hook and cancelled on shutdown:

- settlement (every 5 minutes): live artworks past their end date become
  sold (highest offer wins, an order is opened) or unsold (no offers), then
  the winner and every other bidder are emailed.
- ending soon (every hour): bidders on live artworks closing within the
  next 24 hours are reminded once per artwork.

Status transitions are conditional updates on status == live, and the
ending-soon flag is claimed the same way, so overlapping or repeated runs
never settle or notify an artwork twice.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from pymongo.database import Database

from bidding import BID_ORDER, distinct_bidders
from config import settings
from database import create_document, to_object_id, utcnow
from errors import NotFound
from logger import logger
from notifications import Notifier, find_user
from schemas import ArtworkStatus, Order


@dataclass
class SettlementSummary:
    sold: int = 0
    unsold: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {"sold": self.sold, "unsold": self.unsold, "skipped": self.skipped, "failed": self.failed}


class AuctionJobs:
    def __init__(
        self,
        db: Database,
        notifier: Notifier,
        settle_interval: Optional[int] = None,
        ending_soon_interval: Optional[int] = None,
        ending_soon_window: Optional[timedelta] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.settle_interval = settle_interval or settings.SETTLEMENT_INTERVAL_SECONDS
        self.ending_soon_interval = ending_soon_interval or settings.ENDING_SOON_INTERVAL_SECONDS
        self.ending_soon_window = ending_soon_window or timedelta(hours=settings.ENDING_SOON_WINDOW_HOURS)
        self._tasks: List[asyncio.Task] = []

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        if self.running:
            logger.warning("[jobs] already running")
            return
        self._tasks = [
            asyncio.create_task(self._loop("settlement", self.settle_ended_artworks, self.settle_interval)),
            asyncio.create_task(self._loop("ending_soon", self.notify_ending_soon, self.ending_soon_interval)),
        ]
        logger.info(
            "[jobs] started: settlement every %ss, ending soon every %ss",
            self.settle_interval,
            self.ending_soon_interval,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("[jobs] stopped")

    async def _loop(self, name: str, job: Callable[..., Any], interval: int) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.run_once(name, job)

    async def run_once(self, name: str, job: Callable[..., Any]) -> Any:
        """Run one tick in a worker thread; a failure only aborts this tick"""
        logger.info("[jobs] running %s", name)
        try:
            return await asyncio.to_thread(job)
        except Exception as exc:
            logger.error("[jobs] %s run failed: %s", name, exc, exc_info=True)
            return None

    # ------------------------------------------------------------------
    # settlement
    # ------------------------------------------------------------------

    def settle_ended_artworks(self, now: Optional[datetime] = None) -> SettlementSummary:
        now = now or utcnow()
        summary = SettlementSummary()
        ended = list(self.db["artwork"].find({"status": ArtworkStatus.LIVE.value, "endDate": {"$lte": now}}))
        if not ended:
            logger.info("[jobs] no ended auctions found")
            return summary

        logger.info("[jobs] found %d ended artworks", len(ended))
        for artwork in ended:
            try:
                outcome = self.settle_artwork(artwork, now)
            except Exception as exc:
                logger.error("[jobs] settling artwork %s failed: %s", artwork["_id"], exc, exc_info=True)
                summary.failed += 1
                continue
            if outcome == ArtworkStatus.SOLD:
                summary.sold += 1
            elif outcome == ArtworkStatus.UNSOLD:
                summary.unsold += 1
            else:
                summary.skipped += 1

        logger.info("[jobs] settlement done: %s", summary.as_dict())
        return summary

    def settle_artwork(self, artwork: Dict[str, Any], now: Optional[datetime] = None) -> Optional[ArtworkStatus]:
        """Settle one artwork; returns the new status, or None if it was already settled"""
        now = now or utcnow()
        artwork_id = str(artwork["_id"])
        bids = list(self.db["offer"].find({"artworkId": artwork_id}).sort(BID_ORDER))

        if not bids:
            if not self._transition(artwork, {"status": ArtworkStatus.UNSOLD.value}, now):
                return None
            logger.info("[jobs] no bids on '%s', marked unsold", artwork.get("title"))
            return ArtworkStatus.UNSOLD

        winning = bids[0]
        amount = winning["amount"]
        if not self._transition(artwork, {"status": ArtworkStatus.SOLD.value, "endPrice": amount}, now):
            return None

        artwork = {**artwork, "status": ArtworkStatus.SOLD.value, "endPrice": amount}
        self._open_order(artwork, winning, now)
        logger.info("[jobs] '%s' sold to %s for %.2f", artwork.get("title"), winning["userId"], amount)

        self._notify_bidder(winning["userId"], artwork_id, lambda user: self.notifier.auction_won(user, artwork, amount))
        for bid in distinct_bidders(bids)[1:]:
            self._notify_bidder(
                bid["userId"],
                artwork_id,
                lambda user: self.notifier.auction_lost(user, artwork, bid["amount"], amount),
            )

        return ArtworkStatus.SOLD

    def _notify_bidder(self, user_id: Any, artwork_id: str, send: Callable[[Dict[str, Any]], Any]) -> None:
        """Look up one recipient and notify them; a failure only skips this recipient"""
        try:
            user = find_user(self.db, user_id)
            if not user:
                logger.error("[jobs] bidder %s of artwork %s not found", user_id, artwork_id)
                return
            send(user)
        except Exception as exc:
            logger.error("[jobs] notifying %s about artwork %s failed: %s", user_id, artwork_id, exc, exc_info=True)

    def _transition(self, artwork: Dict[str, Any], changes: Dict[str, Any], now: datetime) -> bool:
        result = self.db["artwork"].update_one(
            {"_id": artwork["_id"], "status": ArtworkStatus.LIVE.value},
            {"$set": {**changes, "updatedAt": now}},
        )
        if result.modified_count == 0:
            logger.info("[jobs] artwork %s already settled, skipping", artwork["_id"])
            return False
        return True

    def _open_order(self, artwork: Dict[str, Any], winning: Dict[str, Any], now: datetime) -> Optional[str]:
        artwork_id = str(artwork["_id"])
        if self.db["order"].find_one({"artworkId": artwork_id}):
            return None
        auction = None
        try:
            auction = self.db["auction"].find_one({"_id": to_object_id(artwork.get("auctionId"), "Auction")})
        except NotFound:
            logger.warning("[jobs] artwork %s has an invalid auction reference", artwork_id)
        if not auction:
            logger.warning("[jobs] no auction for artwork %s, order not opened", artwork_id)
            return None

        order = Order(
            artwork_id=artwork_id,
            seller_id=auction["artistId"],
            buyer_id=winning["userId"],
            amount=winning["amount"],
            currency=artwork.get("currency"),
        )
        doc = order.model_dump(by_alias=True)
        doc["createdAt"] = now
        return create_document(self.db, "order", doc)

    # ------------------------------------------------------------------
    # ending soon
    # ------------------------------------------------------------------

    def notify_ending_soon(self, now: Optional[datetime] = None) -> int:
        """Remind bidders of artworks closing within the window; returns artworks processed"""
        now = now or utcnow()
        ending = list(
            self.db["artwork"].find(
                {
                    "status": ArtworkStatus.LIVE.value,
                    "endDate": {"$gte": now, "$lte": now + self.ending_soon_window},
                    "endingSoonNotified": {"$ne": True},
                }
            )
        )
        if not ending:
            logger.info("[jobs] no auctions ending soon")
            return 0

        processed = 0
        for artwork in ending:
            try:
                if self._notify_artwork_ending(artwork, now):
                    processed += 1
            except Exception as exc:
                logger.error("[jobs] ending-soon for artwork %s failed: %s", artwork["_id"], exc, exc_info=True)
        logger.info("[jobs] ending-soon notifications done for %d artworks", processed)
        return processed

    def _notify_artwork_ending(self, artwork: Dict[str, Any], now: datetime) -> bool:
        claimed = self.db["artwork"].update_one(
            {"_id": artwork["_id"], "endingSoonNotified": {"$ne": True}},
            {"$set": {"endingSoonNotified": True, "updatedAt": now}},
        )
        if claimed.modified_count == 0:
            return False

        artwork_id = str(artwork["_id"])
        bids = list(self.db["offer"].find({"artworkId": artwork_id}).sort(BID_ORDER))
        for bid in distinct_bidders(bids):
            self._notify_bidder(
                bid["userId"], artwork_id, lambda user: self.notifier.ending_soon(user, artwork, bid["amount"])
            )
        return True
