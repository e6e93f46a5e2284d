"""Tests for subscribers and email campaigns."""

import pytest

from storefront.errors import NoEligibleSubscribersError, SubscriberNotFoundError
from storefront.marketing import commands, queries

pytestmark = pytest.mark.anyio


def subscriber(sid, **overrides):
    values = {
        "id": sid,
        "email": f"{sid}@example.com",
        "discount_code_sent": False,
        "cart_reminder_sent": False,
        "abandonment_email_sent": False,
        "cart_items": [],
        "purchase_history": [],
    }
    values.update(overrides)
    return values


class TestEligibility:
    subscribers = [
        subscriber("a"),
        subscriber("b", discount_code_sent=True, cart_items=[{"id": "tea"}]),
        subscriber("c", cart_items=[{"id": "oil"}], cart_reminder_sent=True),
        subscriber("d", purchase_history=[{"order": "1"}], cart_items=[{"id": "tea"}]),
    ]

    def ids(self, campaign_type, selected=None):
        return [
            s["id"]
            for s in commands.eligible_subscribers(self.subscribers, campaign_type, selected)
        ]

    def test_discount_code(self):
        assert self.ids("discount_code") == ["a", "c", "d"]

    def test_cart_reminder(self):
        assert self.ids("cart_reminder") == ["b", "d"]

    def test_abandonment(self):
        assert self.ids("abandonment") == ["a", "b", "c"]

    def test_selection_narrows(self):
        assert self.ids("discount_code", ["c", "b"]) == ["c"]

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            self.ids("newsletter")


class TestRendering:
    def test_markup(self):
        html = commands.render_campaign_html(
            "Hi!\nCode: **SAVE10**\n[Shop now]", "Quibble", "http://shop.test"
        )
        assert "Hi!<br>Code: <strong>SAVE10</strong><br>" in html
        assert '<a href="http://shop.test"' in html
        assert ">Shop now</a>" in html
        assert "Quibble" in html

    def test_default_template_code(self):
        subject, content = commands.default_template("abandonment")
        assert "20%" in subject
        assert "**COMEBACK20**" in content
        _, content = commands.default_template("discount_code", "SPRING")
        assert "**SPRING**" in content


class TestSubscribers:
    async def test_email_normalised_and_deduplicated(self, session):
        first = await commands.add_subscriber(session, "  Jane@Example.com ")
        second = await commands.add_subscriber(session, "jane@example.com", source="checkout")

        assert first["email"] == "jane@example.com"
        assert second["id"] == first["id"]
        assert len(await queries.list_subscribers(session)) == 1

    async def test_delete(self, session):
        sub = await commands.add_subscriber(session, "jane@example.com")
        await commands.delete_subscriber(session, sub["id"])
        assert await queries.list_subscribers(session) == []
        with pytest.raises(SubscriberNotFoundError):
            await commands.delete_subscriber(session, sub["id"])


class TestSendCampaign:
    async def test_counts_and_flags(self, session, email, email_provider):
        await commands.add_subscriber(session, "a@example.com")
        await commands.add_subscriber(session, "b@example.com")
        await commands.add_subscriber(session, "c@example.com")
        email_provider.failing.add("b@example.com")

        result = await commands.send_campaign(
            session, email, "discount_code", discount_code="SAVE10", batch_size=2
        )

        assert (result["success_count"], result["fail_count"]) == (2, 1)
        assert {m["to"] for m in email_provider.sent} == {"a@example.com", "c@example.com"}
        assert all("<strong>SAVE10</strong>" in m["htmlContent"] for m in email_provider.sent)

        subscribers = await queries.list_subscribers(session)
        assert all(s["discount_code_sent"] for s in subscribers)
        stats = await queries.subscriber_stats(session)
        assert stats == {
            "total": 3,
            "discount_codes_sent": 3,
            "cart_reminders_sent": 0,
            "abandonment_emails_sent": 0,
        }

        [campaign] = await queries.list_campaigns(session)
        assert campaign["id"] == result["campaign_id"]
        assert campaign["status"] == "sent"
        assert campaign["sent_count"] == 3
        assert campaign["discount_code"] == "SAVE10"

    async def test_second_send_has_no_recipients(self, session, email):
        await commands.add_subscriber(session, "a@example.com")
        await commands.send_campaign(session, email, "discount_code")

        with pytest.raises(NoEligibleSubscribersError):
            await commands.send_campaign(session, email, "discount_code")

    async def test_all_failed(self, session, email, email_provider):
        await commands.add_subscriber(session, "a@example.com")
        email_provider.failing.add("a@example.com")

        result = await commands.send_campaign(session, email, "abandonment")

        assert result["success_count"] == 0
        [campaign] = await queries.list_campaigns(session)
        assert campaign["status"] == "failed"

    async def test_custom_subject_and_selection(self, session, email, email_provider):
        a = await commands.add_subscriber(session, "a@example.com", cart_items=[{"id": "tea"}])
        await commands.add_subscriber(session, "b@example.com", cart_items=[{"id": "oil"}])

        await commands.send_campaign(
            session,
            email,
            "cart_reminder",
            subject="Still thinking?",
            content="Your cart misses you",
            selected_ids=[a["id"]],
        )

        assert [(m["to"], m["subject"]) for m in email_provider.sent] == [
            ("a@example.com", "Still thinking?")
        ]
