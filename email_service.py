"""
Transactional email through the Resend HTTP API.

EmailService.send raises EmailDeliveryError on any failure; callers that must
not fail (bid placement, settlement) go through notifications.Notifier,
which isolates and logs those errors.
"""

from datetime import datetime
from html import escape
from typing import Any, Dict, Optional

import httpx

from config import settings
from errors import EmailDeliveryError
from logger import logger


class EmailService:
    def __init__(
        self,
        api_key: Optional[str] = None,
        sender: Optional[str] = None,
        api_url: Optional[str] = None,
        enabled: Optional[bool] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.sender = sender or settings.EMAIL_FROM
        self.api_url = api_url or settings.RESEND_API_URL
        self.enabled = settings.EMAILS_ENABLED if enabled is None else enabled
        self.timeout = timeout or settings.EMAIL_TIMEOUT_SECONDS

    def send(self, to: str, subject: str, html: str) -> Optional[Dict[str, Any]]:
        if not self.enabled or not self.api_key:
            logger.info("Email disabled, not sending '%s' to %s", subject, to)
            return None

        try:
            resp = httpx.post(
                self.api_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"from": self.sender, "to": [to], "subject": subject, "html": html},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise EmailDeliveryError(to, f"{type(exc).__name__}: {exc}")

        if resp.status_code >= 300:
            raise EmailDeliveryError(to, f"HTTP {resp.status_code}: {resp.text[:200]}")

        logger.info("Email '%s' sent to %s", subject, to)
        return resp.json()


# =============================================================================
# Templates
# =============================================================================


def _money(amount: float) -> str:
    return f"€{float(amount):.2f}"


def _artwork_url(artwork: Dict[str, Any]) -> str:
    return f"{settings.CLIENT_URL}/auction/{artwork.get('auctionId', '')}"


def _layout(heading: str, body: str, cta_url: Optional[str] = None, cta_label: Optional[str] = None) -> str:
    button = ""
    if cta_url and cta_label:
        button = (
            f'<p style="margin:30px 0;text-align:center;">'
            f'<a href="{escape(cta_url)}" style="display:inline-block;padding:14px 32px;'
            f'background:#667eea;color:#ffffff;text-decoration:none;border-radius:6px;font-weight:bold;">'
            f"{escape(cta_label)}</a></p>"
        )
    return (
        "<!DOCTYPE html><html><head><meta charset=\"UTF-8\"></head>"
        '<body style="margin:0;padding:0;font-family:Arial,sans-serif;background-color:#f4f4f4;">'
        '<table role="presentation" style="width:600px;margin:40px auto;background:#ffffff;border-radius:8px;">'
        '<tr><td style="padding:30px;text-align:center;background:#764ba2;border-radius:8px 8px 0 0;">'
        '<h1 style="margin:0;color:#ffffff;">🎨 Art Auction</h1></td></tr>'
        f'<tr><td style="padding:30px;"><h2 style="color:#333333;">{heading}</h2>{body}{button}</td></tr>'
        '<tr><td style="padding:20px;text-align:center;color:#999999;font-size:12px;">'
        f"© {datetime.now().year} Art Auction. All rights reserved.</td></tr>"
        "</table></body></html>"
    )


def _p(text: str) -> str:
    return f'<p style="color:#666666;font-size:16px;line-height:1.6;">{text}</p>'


def verification_email(user_name: str, token: str):
    url = f"{settings.CLIENT_URL}/verify-email?token={token}"
    body = _p("Thank you for registering at Art Auction. Please verify your email address to activate your account.")
    body += _p(f"<strong>Important:</strong> This link is valid for {settings.EMAIL_VERIFICATION_HOURS} hours only.")
    return "🎨 Verify Your Email - Art Auction", _layout(f"Hello {escape(user_name)}!", body, url, "Verify Email")


def bid_placed_email(user_name: str, artwork: Dict[str, Any], amount: float):
    title = escape(artwork.get("title", ""))
    body = _p(f"Your bid of <strong>{_money(amount)}</strong> on <strong>{title}</strong> was recorded.")
    return f"✅ Bid confirmed: {artwork.get('title', '')}", _layout(
        f"Hello {escape(user_name)}!", body, _artwork_url(artwork), "View auction"
    )


def outbid_email(user_name: str, artwork: Dict[str, Any], your_bid: float, new_highest: float):
    title = escape(artwork.get("title", ""))
    body = _p(
        f"Someone bid <strong>{_money(new_highest)}</strong> on <strong>{title}</strong>, "
        f"above your bid of {_money(your_bid)}."
    )
    return f"⚠️ You've been outbid: {artwork.get('title', '')}", _layout(
        f"Hello {escape(user_name)}!", body, _artwork_url(artwork), "Bid again"
    )


def leading_bid_email(user_name: str, artwork: Dict[str, Any], amount: float):
    title = escape(artwork.get("title", ""))
    body = _p(f"With {_money(amount)} you are now the highest bidder on <strong>{title}</strong>.")
    return f"🏅 You're leading: {artwork.get('title', '')}", _layout(
        f"Hello {escape(user_name)}!", body, _artwork_url(artwork), "View auction"
    )


def auction_won_email(user_name: str, artwork: Dict[str, Any], amount: float):
    title = escape(artwork.get("title", ""))
    body = _p(f"Congratulations! You won <strong>{title}</strong> for {_money(amount)}.")
    body += _p("Please submit your shipping address so the artist can send your artwork.")
    url = f"{settings.CLIENT_URL}/shipping/{artwork.get('_id', '')}"
    return f"🏆 You won: {artwork.get('title', '')}", _layout(
        f"Hello {escape(user_name)}!", body, url, "Enter shipping address"
    )


def auction_lost_email(user_name: str, artwork: Dict[str, Any], your_bid: float, winning_amount: float):
    title = escape(artwork.get("title", ""))
    body = _p(
        f"The auction for <strong>{title}</strong> has ended. Your bid was {_money(your_bid)}, "
        f"the winning bid was {_money(winning_amount)}."
    )
    return f"Auction ended: {artwork.get('title', '')}", _layout(
        f"Hello {escape(user_name)}!", body, f"{settings.CLIENT_URL}/auctions", "Browse auctions"
    )


def ending_soon_email(user_name: str, artwork: Dict[str, Any], your_bid: float):
    title = escape(artwork.get("title", ""))
    body = _p(
        f"The auction for <strong>{title}</strong> ends within {settings.ENDING_SOON_WINDOW_HOURS} hours. "
        f"Your current bid is {_money(your_bid)}."
    )
    return f"⏰ Ending soon: {artwork.get('title', '')}", _layout(
        f"Hello {escape(user_name)}!", body, _artwork_url(artwork), "View auction"
    )
