"""
Notification API and fan-out behaviour
"""

import asyncio
from unittest.mock import patch

from models.notification import NotificationCategory
from services import notification_service


class TestNotificationInbox:

    def _seed(self, api):
        """Quotation created + sent: two notifications for the client account"""
        api.sent_quotation()
        api.login(api.customer)

    def test_list_own_notifications(self, api):
        self._seed(api)

        data = api.get("/api/notifications").json()["data"]

        assert data["unread_count"] == 2
        assert {n["subject"] for n in data["notifications"]} == {"New Quotation", "Quotation Received"}
        assert all(n["recipient"] == api.customer.id for n in data["notifications"])

    def test_other_users_see_nothing(self, api):
        self._seed(api)
        api.login(api.outsider)

        data = api.get("/api/notifications").json()["data"]

        assert data["notifications"] == []

    def test_mark_one_read(self, api):
        self._seed(api)
        notification = api.get("/api/notifications").json()["data"]["notifications"][0]

        response = api.patch(f"/api/notifications/{notification['_id']}/read")

        assert response.json()["data"]["notification"]["read_at"] is not None
        assert api.get("/api/notifications/unread-count").json()["data"]["unread_count"] == 1
        unread = api.get("/api/notifications", params={"status": "unread"}).json()["data"]["notifications"]
        assert notification["_id"] not in [n["_id"] for n in unread]

    def test_mark_all_read(self, api):
        self._seed(api)

        response = api.patch("/api/notifications/read-all")

        assert response.json()["data"]["modified_count"] == 2
        assert api.get("/api/notifications/unread-count").json()["data"]["unread_count"] == 0
        read = api.get("/api/notifications", params={"status": "read"}).json()["data"]
        assert read["pagination"]["total"] == 2

    def test_cannot_touch_someone_elses_notification(self, api):
        self._seed(api)
        notification = api.get("/api/notifications").json()["data"]["notifications"][0]
        api.login(api.outsider)

        assert api.patch(f"/api/notifications/{notification['_id']}/read").status_code == 404
        assert api.delete(f"/api/notifications/{notification['_id']}").status_code == 404

    def test_delete(self, api):
        self._seed(api)
        notification = api.get("/api/notifications").json()["data"]["notifications"][0]

        response = api.delete(f"/api/notifications/{notification['_id']}")

        assert response.status_code == 200
        assert api.get("/api/notifications").json()["data"]["pagination"]["total"] == 1

    def test_filter_by_category(self, api):
        self._seed(api)

        data = api.get("/api/notifications", params={"category": "invoice"}).json()["data"]

        assert data["notifications"] == []


class TestFanOut:

    def test_recipients_are_deduplicated(self, api, db):
        customer = api.default_customer()
        project = api.create_project(customer_id=customer["_id"], assigned_to=[api.manager.id, api.customer.id])
        event = notification_service.build_event(
            NotificationCategory.GENERAL,
            "Hello",
            "Kick-off tomorrow",
            client=customer["_id"],
            project=project["_id"],
            recipients=[api.manager.id, None]
        )

        delivered = asyncio.run(notification_service.fan_out(db, event))

        assert delivered == 2
        recipients = [n["recipient"] for n in asyncio.run(db.notifications.find({}).to_list(length=None))]
        assert sorted(recipients) == sorted([api.manager.id, api.customer.id])

    def test_one_failing_recipient_does_not_stop_others(self, db):
        event = notification_service.build_event(
            NotificationCategory.GENERAL, "Hello", "World", recipients=["a", "b"]
        )
        real = notification_service.create_in_app_notification

        async def flaky(database, recipient, *args):
            if recipient == "a":
                raise RuntimeError("boom")
            return await real(database, recipient, *args)

        with patch("services.notification_service.create_in_app_notification", side_effect=flaky):
            delivered = asyncio.run(notification_service.fan_out(db, event))

        assert delivered == 1
        assert [n["recipient"] for n in asyncio.run(db.notifications.find({}).to_list(length=None))] == ["b"]

    def test_failed_fan_out_does_not_fail_the_request(self, api):
        with patch("services.notification_service.resolve_recipients", side_effect=RuntimeError("db down")):
            quotation = api.create_quotation()

        assert quotation["status"] == "pending"
