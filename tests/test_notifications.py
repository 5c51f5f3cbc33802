import httpx
import pytest

import bidding
import email_service
from email_service import EmailService
from errors import EmailDeliveryError
from notifications import DispatchReport, Notifier, find_user


@pytest.fixture
def auction(make_auction):
    return make_auction(min_increment=5)


@pytest.fixture
def artwork(make_artwork, auction):
    return make_artwork(auction, start_price=100, title="Night Harbour")


def _place(db, notifier, artwork, user, amount):
    outcome = bidding.place_bid(db, str(artwork["_id"]), user["id"], amount)
    return notifier.bid_placed(db, outcome.offer, outcome.artwork, outcome.auction)


class TestBidPlaced:
    def test_first_bid_confirms_and_leads(self, db, notifier, mailer, artwork, make_user):
        a = make_user()
        report = _place(db, notifier, artwork, a, 100)

        assert report.ok
        subjects = mailer.subjects_for(a["email"])
        assert subjects[0].startswith("✅ Bid confirmed")
        assert subjects[1].startswith("🏅 You're leading")
        assert len(mailer.sent) == 2

    def test_previous_leader_is_outbid(self, db, notifier, mailer, artwork, make_user):
        a, b = make_user(), make_user()
        _place(db, notifier, artwork, a, 100)
        mailer.sent.clear()

        _place(db, notifier, artwork, b, 150)

        outbid = [m for m in mailer.sent if m["to"] == a["email"]]
        assert len(outbid) == 1
        assert outbid[0]["subject"].startswith("⚠️ You've been outbid")
        assert "€150.00" in outbid[0]["html"]
        assert "€100.00" in outbid[0]["html"]
        assert len(mailer.subjects_for(b["email"])) == 2

    def test_raising_own_lead_notifies_runner_up(self, db, notifier, mailer, artwork, make_user):
        a, b = make_user(), make_user()
        _place(db, notifier, artwork, b, 100)
        _place(db, notifier, artwork, a, 110)
        mailer.sent.clear()

        _place(db, notifier, artwork, a, 200)

        assert mailer.subjects_for(b["email"])[0].startswith("⚠️")
        assert len(mailer.subjects_for(a["email"])) == 2

    def test_failure_is_reported_not_raised(self, db, mailer, artwork, make_user):
        a, b = make_user(), make_user()
        notifier = Notifier(mailer)
        _place(db, notifier, artwork, a, 100)
        mailer.failing.add(a["email"])
        mailer.sent.clear()

        report = _place(db, notifier, artwork, b, 150)

        assert not report.ok
        assert report.failed == [a["email"]]
        assert len(mailer.subjects_for(b["email"])) == 2

    def test_missing_bidder_sends_nothing(self, db, notifier, mailer, artwork, auction):
        offer = {"userId": "64b000000000000000000009", "amount": 100}
        report = notifier.bid_placed(db, offer, artwork, auction)
        assert report.sent == []
        assert mailer.sent == []


class TestNotifier:
    def test_user_without_email(self, notifier, mailer, artwork):
        report = notifier.auction_won({"_id": "u1", "userName": "ghost"}, artwork, 100)
        assert report.failed == ["u1"]
        assert mailer.sent == []

    def test_verification(self, notifier, mailer, make_user):
        user = make_user()
        report = notifier.verification(user, "tok123")
        assert report.sent == [user["email"]]
        assert "verify-email?token=tok123" in mailer.sent[0]["html"]

    def test_find_user(self, db, make_user):
        user = make_user()
        assert find_user(db, user["id"])["email"] == user["email"]
        assert find_user(db, {"_id": user["_id"]})["email"] == user["email"]
        assert find_user(db, "garbage") is None

    def test_report_log_returns_self(self):
        report = DispatchReport("x", sent=["a@example.com"])
        assert report.log() is report
        assert report.ok


class TestEmailService:
    def test_disabled_does_not_call_api(self, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError("should not post")

        monkeypatch.setattr(httpx, "post", fail)
        assert EmailService(api_key="key", enabled=False).send("a@example.com", "s", "<p>x</p>") is None
        assert EmailService(api_key="", enabled=True).send("a@example.com", "s", "<p>x</p>") is None

    def test_sends_through_resend(self, monkeypatch):
        calls = []

        def fake_post(url, headers, json, timeout):
            calls.append((url, headers, json))
            return httpx.Response(200, json={"id": "email_1"})

        monkeypatch.setattr(httpx, "post", fake_post)
        service = EmailService(api_key="re_key", sender="art@example.com", api_url="https://resend.test/emails", enabled=True)

        assert service.send("a@example.com", "Hi", "<p>x</p>") == {"id": "email_1"}
        url, headers, body = calls[0]
        assert url == "https://resend.test/emails"
        assert headers["Authorization"] == "Bearer re_key"
        assert body == {"from": "art@example.com", "to": ["a@example.com"], "subject": "Hi", "html": "<p>x</p>"}

    def test_error_status_raises(self, monkeypatch):
        monkeypatch.setattr(httpx, "post", lambda *a, **k: httpx.Response(422, text="invalid"))
        with pytest.raises(EmailDeliveryError) as exc:
            EmailService(api_key="re_key", enabled=True).send("a@example.com", "Hi", "x")
        assert "HTTP 422" in exc.value.message

    def test_transport_error_raises(self, monkeypatch):
        def boom(*args, **kwargs):
            raise httpx.ConnectError("refused")

        monkeypatch.setattr(httpx, "post", boom)
        with pytest.raises(EmailDeliveryError):
            EmailService(api_key="re_key", enabled=True).send("a@example.com", "Hi", "x")

    def test_templates_escape_titles(self):
        subject, html = email_service.outbid_email("<b>", {"title": "<script>"}, 100, 150)
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert subject.endswith("<script>")
