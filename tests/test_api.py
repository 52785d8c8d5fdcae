"""
HTTP tests: status codes and plain-text error bodies through the real app
"""
from fastapi.testclient import TestClient

from santiye.auth import create_access_token
from santiye.dependencies import get_db
from santiye.server import app, GENERIC_ERROR_MESSAGE
from santiye.storage import EntityStore


def create_project(client, **extra):
    response = client.post("/api/projects", json={"name": "Merkez Şantiye", "advancePayment": 1000, **extra})
    assert response.status_code == 201, response.text
    return response.json()


def create_expense(client, project_id, amount, **extra):
    response = client.post("/api/transactions", json={
        "projectId": project_id,
        "type": "Gider",
        "amount": amount,
        "date": "2024-03-01",
        "description": "Beton",
        "isGrubu": "Kaba İmalat",
        "rayicGrubu": "Malzeme",
        **extra,
    })
    return response


async def _fail(*args, **kwargs):
    raise RuntimeError("connection reset")


class TestHealthAndAuth:

    def test_health_is_public(self):
        response = TestClient(app).get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_routes_require_bearer_token(self):
        response = TestClient(app).get("/api/projects")
        assert response.status_code in (401, 403)
        assert response.headers["content-type"].startswith("text/plain")

    def test_issued_token_accepted(self, db):
        app.dependency_overrides[get_db] = lambda: db
        try:
            token = create_access_token({"user_id": "saha-muhendisi"})
            response = TestClient(app).get("/api/projects", headers={"Authorization": f"Bearer {token}"})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 200
        assert response.json() == []

    def test_invalid_token_rejected(self):
        response = TestClient(app).get("/api/projects", headers={"Authorization": "Bearer nonsense"})
        assert response.status_code == 401
        assert response.text == "Kimlik doğrulanamadı"


class TestProjects:

    def test_crud(self, client):
        project = create_project(client)
        assert project["advancePayment"] == "1000.00"
        assert project["status"] == "Planlama"

        response = client.patch(f"/api/projects/{project['id']}", json={"status": "Devam Ediyor"})
        assert response.status_code == 200
        assert response.json()["status"] == "Devam Ediyor"

        assert client.delete(f"/api/projects/{project['id']}").status_code == 204
        response = client.get(f"/api/projects/{project['id']}")
        assert response.status_code == 404
        assert response.text == "Proje bulunamadı"

    def test_advance_balance(self, client):
        project = create_project(client)
        response = client.get(f"/api/projects/{project['id']}/advance-balance")
        assert response.status_code == 200
        assert response.json() == {
            "total": "1000.00",
            "used": "0.00",
            "remaining": "1000.00",
            "exhausted": False,
            "warning": None,
        }

    def test_budget_items(self, client):
        project = create_project(client)
        response = client.post("/api/budget-items", json={
            "projectId": project["id"],
            "name": "C30 beton",
            "quantity": 120,
            "unit": "m3",
            "unitPrice": 2500,
            "isGrubu": "Kaba İmalat",
            "rayicGrubu": "Malzeme",
        })
        assert response.status_code == 201, response.text
        item = response.json()

        listed = client.get("/api/budget-items", params={"projectId": project["id"]}).json()
        assert [i["id"] for i in listed] == [item["id"]]

        response = client.patch(f"/api/budget-items/{item['id']}", json={"unitPrice": 2750})
        assert response.json()["unitPrice"] == "2750.00"
        assert client.delete(f"/api/budget-items/{item['id']}").status_code == 204


class TestTransactionsAndInvoices:

    def test_linked_creation(self, client):
        project = create_project(client)
        response = create_expense(client, project["id"], 1200, invoiceNumber="F-001", createInvoice=True)
        assert response.status_code == 201, response.text
        transaction = response.json()

        invoice = client.get(f"/api/invoices/{transaction['linkedInvoiceId']}").json()
        assert invoice["linkedTransactionId"] == transaction["id"]
        assert invoice["type"] == "Alış"
        assert invoice["total"] == "1200.00"

    def test_duplicate_invoice_number_is_409(self, client):
        project = create_project(client)
        response = client.post("/api/invoices", json={
            "invoiceNumber": "F-001",
            "type": "Alış",
            "projectId": project["id"],
            "date": "2024-03-01",
            "subtotal": 100,
        })
        assert response.status_code == 201, response.text

        response = create_expense(client, project["id"], 1200, invoiceNumber="F-001", createInvoice=True)

        assert response.status_code == 409
        assert response.headers["content-type"].startswith("text/plain")
        assert "F-001" in response.text
        assert client.get("/api/transactions").json() == []
        assert len(client.get("/api/invoices").json()) == 1

    def test_failed_link_is_500_and_rolled_back(self, client, monkeypatch):
        project = create_project(client)
        monkeypatch.setattr(EntityStore, "create_invoice", _fail)

        response = create_expense(client, project["id"], 1200, invoiceNumber="F-009", createInvoice=True)

        assert response.status_code == 500
        assert "iptal edildi" in response.text
        assert client.get("/api/transactions").json() == []

    def test_invoice_with_transaction(self, client):
        project = create_project(client)
        response = client.post("/api/invoices", json={
            "invoiceNumber": "S-100",
            "type": "Satış",
            "projectId": project["id"],
            "date": "2024-03-01",
            "subtotal": 1000,
            "taxRate": 20,
            "createTransaction": True,
        })
        assert response.status_code == 201, response.text
        invoice = response.json()
        assert invoice["total"] == "1200.00"

        transaction = client.get(f"/api/transactions/{invoice['linkedTransactionId']}").json()
        assert transaction["type"] == "Gelir"
        assert transaction["incomeKind"] == "Hakediş Geliri"

    def test_invoice_transaction_needs_project(self, client):
        response = client.post("/api/invoices", json={
            "invoiceNumber": "S-101",
            "type": "Satış",
            "date": "2024-03-01",
            "subtotal": 1000,
            "createTransaction": True,
        })
        assert response.status_code == 400
        assert client.get("/api/invoices").json() == []

    def test_oversized_amount_is_400(self, client):
        project = create_project(client)

        response = create_expense(client, project["id"], "1e30")

        assert response.status_code == 400
        assert response.headers["content-type"].startswith("text/plain")
        assert "amount" in response.text
        assert client.get("/api/transactions").json() == []

    def test_fractional_cents_rejected(self, client):
        project = create_project(client)

        response = create_expense(client, project["id"], "10.005")

        assert response.status_code == 400

    def test_invoice_without_tax_rate_uses_default(self, client):
        project = create_project(client)
        response = client.post("/api/invoices", json={
            "invoiceNumber": "A-200",
            "type": "Alış",
            "projectId": project["id"],
            "date": "2024-03-01",
            "subtotal": 1000,
        })

        assert response.status_code == 201, response.text
        assert response.json()["taxRate"] == "20.00"
        assert response.json()["total"] == "1200.00"

    def test_schema_violation_is_400_plain_text(self, client):
        project = create_project(client)
        response = client.post("/api/transactions", json={"projectId": project["id"], "type": "Gider"})

        assert response.status_code == 400
        assert response.headers["content-type"].startswith("text/plain")
        assert "amount" in response.text

    def test_unknown_transaction_is_404(self, client):
        response = client.patch("/api/transactions/000000000000000000000000", json={"amount": 5})
        assert response.status_code == 404
        assert response.text == "İşlem bulunamadı"

    def test_delete_transaction(self, client):
        project = create_project(client)
        transaction = create_expense(client, project["id"], 100).json()

        assert client.delete(f"/api/transactions/{transaction['id']}").status_code == 204
        assert client.delete(f"/api/transactions/{transaction['id']}").status_code == 404


class TestProgressPayments:

    def test_lifecycle(self, client):
        project = create_project(client)
        a = create_expense(client, project["id"], 600).json()
        b = create_expense(client, project["id"], 400).json()

        response = client.post("/api/progress-payments", json={
            "projectId": project["id"],
            "date": "2024-03-31",
            "description": "Mart",
            "contractorFeeRate": 10,
            "advanceDeductionRate": 20,
            "transactionIds": [a["id"], b["id"]],
        })
        assert response.status_code == 201, response.text
        payment = response.json()
        assert payment["paymentNumber"] == 1
        assert payment["grossAmount"] == "1100.00"
        assert payment["netPayment"] == "880.00"

        covered = client.get(f"/api/transactions/{a['id']}").json()
        assert covered["progressPaymentId"] == payment["id"]

        selectable = client.get(f"/api/projects/{project['id']}/expense-transactions").json()
        assert selectable == []

        balance = client.get(f"/api/projects/{project['id']}/advance-balance").json()
        assert balance["remaining"] == "780.00"

        response = client.patch(f"/api/progress-payments/{payment['id']}", json={"transactionIds": [b["id"]]})
        assert response.status_code == 200
        assert response.json()["amount"] == "400.00"
        assert client.get(f"/api/transactions/{a['id']}").json()["progressPaymentId"] is None

        summary = client.get("/api/progress-payments/summary", params={"projectId": project["id"]}).json()
        assert summary["count"] == 1
        assert summary["totalAmount"] == "400.00"

        assert client.delete(f"/api/progress-payments/{payment['id']}").status_code == 204
        assert client.get(f"/api/transactions/{b['id']}").json()["progressPaymentId"] is None

    def test_rate_above_hundred_is_400(self, client):
        project = create_project(client)
        expense = create_expense(client, project["id"], 1000).json()

        response = client.post("/api/progress-payments", json={
            "projectId": project["id"],
            "date": "2024-03-31",
            "advanceDeductionRate": 150,
            "transactionIds": [expense["id"]],
        })

        assert response.status_code == 400
        assert "advanceDeductionRate" in response.text
        assert client.get("/api/progress-payments").json() == []

    def test_exhausted_advance_rate_reads_as_two_decimals(self, client):
        project = create_project(client, advancePayment=0)
        expense = create_expense(client, project["id"], 1000).json()

        response = client.post("/api/progress-payments", json={
            "projectId": project["id"],
            "date": "2024-03-31",
            "advanceDeductionRate": 20,
            "transactionIds": [expense["id"]],
        })

        assert response.status_code == 201, response.text
        assert response.json()["advanceDeductionRate"] == "0.00"
        assert response.json()["netPayment"] == "1000.00"

    def test_income_selection_is_400(self, client):
        project = create_project(client)
        income = create_expense(client, project["id"], 100, type="Gelir").json()

        response = client.post("/api/progress-payments", json={
            "projectId": project["id"],
            "date": "2024-03-31",
            "transactionIds": [income["id"]],
        })
        assert response.status_code == 400

    def test_unknown_payment_is_404(self, client):
        response = client.patch("/api/progress-payments/000000000000000000000000", json={"description": "x"})
        assert response.status_code == 404
        assert response.text == "Hakediş bulunamadı"


class TestAuditAndErrors:

    def test_writes_are_audited(self, client):
        project = create_project(client)

        logs = client.get("/api/audit-logs", params={"entityType": "PROJECT"}).json()

        assert logs[0]["entityId"] == project["id"]
        assert logs[0]["actionType"] == "CREATE"
        assert logs[0]["userId"] == "test-user"

    def test_unexpected_failure_is_generic_500(self, client, monkeypatch):
        monkeypatch.setattr(EntityStore, "get_projects", _fail)

        response = client.get("/api/projects")

        assert response.status_code == 500
        assert response.text == GENERIC_ERROR_MESSAGE
