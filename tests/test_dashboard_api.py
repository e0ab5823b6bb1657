"""
Dashboards - admin, client and revenue aggregates
"""

import asyncio
from datetime import datetime, timedelta


class TestAdminDashboard:

    def test_overview(self, api):
        paid = api.create_invoice()
        api.patch(f"/api/invoices/{paid['_id']}/mark-paid", json={"payment_method": "cash"})
        partial = api.create_invoice()
        api.post("/api/payments", json={"invoice": partial["_id"], "amount": 5, "payment_method": "mpesa"})

        overview = api.get("/api/dashboard/admin").json()["data"]["overview"]

        assert overview["invoices"]["total"] == 2
        assert overview["invoices"]["by_status"]["paid"] == 1
        assert overview["invoices"]["outstanding"] == 200
        assert overview["quotations"]["by_status"]["converted"] == 2
        assert overview["payments"]["completed"] == 2
        assert overview["payments"]["total_amount"] == 210
        assert overview["revenue"]["total"] == 205
        assert overview["revenue"]["from_payments"] == 210
        assert overview["clients"]["total"] == 1
        assert overview["projects"]["by_status"]["pending"] == 2

    def test_recent_activity_is_capped(self, api):
        for _ in range(3):
            api.create_project()

        recent = api.get("/api/dashboard/admin").json()["data"]["recent_activity"]

        assert len(recent["projects"]) == 3
        assert recent["invoices"] == []

    def test_project_manager_is_forbidden(self, api):
        api.login(api.manager)
        assert api.get("/api/dashboard/admin").status_code == 403


class TestClientDashboard:

    def test_scoped_to_callers_client_record(self, api):
        invoice = api.create_invoice()
        api.post("/api/payments", json={"invoice": invoice["_id"], "amount": 5, "payment_method": "cash"})
        other_customer = api.create_customer()
        other_project = api.create_project(customer_id=other_customer["_id"])
        api.create_quotation(project_id=other_project["_id"])
        api.login(api.customer)

        overview = api.get("/api/dashboard/client").json()["data"]["overview"]

        assert overview["invoices"]["total"] == 1
        assert overview["quotations"]["total"] == 1
        assert overview["projects"]["total"] == 1
        assert overview["payments"]["total_amount"] == 5
        assert overview["financial"]["outstanding_balance"] == 200
        assert overview["financial"]["total_spent"] == 0

    def test_user_without_client_record_is_404(self, api):
        api.login(api.outsider)
        response = api.get("/api/dashboard/client")
        assert response.status_code == 404
        assert response.json()["message"] == "Client not found"


class TestRevenueStats:

    def test_default_window(self, api):
        paid = api.create_invoice()
        api.patch(f"/api/invoices/{paid['_id']}/mark-paid", json={"payment_method": "stripe"})
        partial = api.create_invoice()
        api.post("/api/payments", json={"invoice": partial["_id"], "amount": 5, "payment_method": "cash"})

        data = api.get("/api/dashboard/revenue").json()["data"]

        assert data["revenue"]["total"] == 205
        assert data["revenue"]["outstanding"] == 200
        assert data["revenue"]["by_method"] == {"stripe": 205, "cash": 5}
        assert data["invoice_count"] == 1
        assert data["payment_count"] == 2
        assert data["top_clients"][0]["client"] == paid["client"]
        assert data["top_clients"][0]["total"] == 205
        assert data["top_clients"][0]["name"] == "Jane Doe"

    def test_old_revenue_outside_window(self, api, db):
        paid = api.create_invoice()
        api.patch(f"/api/invoices/{paid['_id']}/mark-paid")
        long_ago = datetime.utcnow() - timedelta(days=90)
        asyncio.run(db.invoices.update_one({"_id": paid["_id"]}, {"$set": {"paid_date": long_ago}}))

        data = api.get("/api/dashboard/revenue").json()["data"]

        assert data["revenue"]["total"] == 0
        assert data["top_clients"] == []

    def test_period_sets_default_window(self, api, db):
        paid = api.create_invoice()
        api.patch(f"/api/invoices/{paid['_id']}/mark-paid")
        long_ago = datetime.utcnow() - timedelta(days=90)
        asyncio.run(db.invoices.update_one({"_id": paid["_id"]}, {"$set": {"paid_date": long_ago}}))

        yearly = api.get("/api/dashboard/revenue", params={"period": "yearly"}).json()["data"]
        weekly = api.get("/api/dashboard/revenue", params={"period": "weekly"}).json()["data"]

        assert yearly["revenue"]["total"] == 205
        assert yearly["period"]["type"] == "yearly"
        assert weekly["revenue"]["total"] == 0

    def test_unknown_period_is_400(self, api):
        response = api.get("/api/dashboard/revenue", params={"period": "hourly"})
        assert response.status_code == 400

    def test_explicit_window(self, api, db):
        paid = api.create_invoice()
        api.patch(f"/api/invoices/{paid['_id']}/mark-paid")
        long_ago = datetime.utcnow() - timedelta(days=90)
        asyncio.run(db.invoices.update_one({"_id": paid["_id"]}, {"$set": {"paid_date": long_ago}}))

        data = api.get("/api/dashboard/revenue", params={
            "start_date": (long_ago - timedelta(days=1)).isoformat(),
            "end_date": (long_ago + timedelta(days=1)).isoformat()
        }).json()["data"]

        assert data["revenue"]["total"] == 205
