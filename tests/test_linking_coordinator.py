from decimal import Decimal

import pytest

from santiye.core.duplicate_protection import DuplicateInvoiceError
from santiye.core.linking_coordinator import (
    LinkingCoordinator, LinkedRecordCreationError, LinkValidationError
)
from santiye.core.progress_payment_engine import ProgressPaymentEngine
from tests.conftest import run, make_transaction, TODAY


def transaction_input(project_id, **extra):
    return {
        "project_id": project_id,
        "type": "Gider",
        "amount": Decimal("1200"),
        "date": TODAY,
        "description": "Demir alımı",
        "is_grubu": "Kaba İmalat",
        "rayic_grubu": "Malzeme",
        "invoice_number": "FT-001",
        **extra,
    }


def invoice_input(project_id, **extra):
    return {
        "invoice_number": "SF-001",
        "type": "Satış",
        "project_id": project_id,
        "date": TODAY,
        "subtotal": Decimal("1000"),
        "tax_rate": Decimal("20"),
        "status": "Ödenmedi",
        "paid_amount": Decimal("0"),
        **extra,
    }


async def _fail(*args, **kwargs):
    raise RuntimeError("disk full")


async def _vanish(*args, **kwargs):
    return None


class TestTransactionFirst:

    def test_plain_create_without_invoice(self, store, project):
        coordinator = LinkingCoordinator(store)
        transaction = run(coordinator.create_linked_transaction_and_invoice(transaction_input(project["id"])))

        assert transaction.get("linked_invoice_id") is None
        assert run(store.get_invoices()) == []

    def test_create_invoice_without_number_is_plain(self, store, project):
        coordinator = LinkingCoordinator(store)
        run(coordinator.create_linked_transaction_and_invoice(
            transaction_input(project["id"], invoice_number=None), create_invoice=True
        ))

        assert run(store.get_invoices()) == []

    def test_linked_pair_references_each_other(self, store, project):
        coordinator = LinkingCoordinator(store)
        transaction = run(coordinator.create_linked_transaction_and_invoice(
            transaction_input(project["id"]), create_invoice=True
        ))

        invoice = run(store.get_invoice(transaction["linked_invoice_id"]))
        assert invoice["linked_transaction_id"] == transaction["id"]
        assert invoice["type"] == "Alış"
        assert invoice["status"] == "Ödendi"
        assert invoice["total"] == "1200.00"
        assert invoice["paid_amount"] == "1200.00"
        assert invoice["subtotal"] == "1000.00"
        assert invoice["tax_amount"] == "200.00"

    def test_income_maps_to_sale_invoice(self, store, project):
        coordinator = LinkingCoordinator(store)
        transaction = run(coordinator.create_linked_transaction_and_invoice(
            transaction_input(project["id"], type="Gelir"), create_invoice=True
        ))

        invoice = run(store.get_invoice(transaction["linked_invoice_id"]))
        assert invoice["type"] == "Satış"

    def test_explicit_tax_rate(self, store, project):
        coordinator = LinkingCoordinator(store)
        transaction = run(coordinator.create_linked_transaction_and_invoice(
            transaction_input(project["id"], amount=Decimal("1100")),
            create_invoice=True,
            invoice_tax_rate=Decimal("10")
        ))

        invoice = run(store.get_invoice(transaction["linked_invoice_id"]))
        assert invoice["subtotal"] == "1000.00"
        assert invoice["tax_rate"] == "10.00"

    def test_failed_invoice_leaves_nothing(self, store, project, monkeypatch):
        monkeypatch.setattr(store, "create_invoice", _fail)
        coordinator = LinkingCoordinator(store)

        with pytest.raises(LinkedRecordCreationError):
            run(coordinator.create_linked_transaction_and_invoice(
                transaction_input(project["id"]), create_invoice=True
            ))

        assert run(store.get_transactions()) == []

    def test_lost_back_reference_rolls_back_both(self, store, project, monkeypatch):
        monkeypatch.setattr(store, "update_transaction", _vanish)
        coordinator = LinkingCoordinator(store)

        with pytest.raises(LinkedRecordCreationError):
            run(coordinator.create_linked_transaction_and_invoice(
                transaction_input(project["id"]), create_invoice=True
            ))

        assert run(store.get_transactions()) == []
        assert run(store.get_invoices()) == []

    def test_rollback_survives_failing_compensation(self, store, project, monkeypatch):
        monkeypatch.setattr(store, "update_transaction", _fail)
        monkeypatch.setattr(store, "delete_invoice", _fail)
        coordinator = LinkingCoordinator(store)

        with pytest.raises(LinkedRecordCreationError) as excinfo:
            run(coordinator.create_linked_transaction_and_invoice(
                transaction_input(project["id"]), create_invoice=True
            ))

        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert run(store.get_transactions()) == []

    def test_duplicate_number_writes_nothing(self, store, project):
        coordinator = LinkingCoordinator(store)
        run(coordinator.create_linked_transaction_and_invoice(
            transaction_input(project["id"]), create_invoice=True
        ))

        with pytest.raises(DuplicateInvoiceError) as excinfo:
            run(coordinator.create_linked_transaction_and_invoice(
                transaction_input(project["id"], amount=Decimal("50")), create_invoice=True
            ))

        assert "FT-001" in str(excinfo.value)
        assert len(run(store.get_transactions())) == 1
        assert len(run(store.get_invoices())) == 1


class TestInvoiceFirst:

    def test_invoice_totals_recomputed(self, store, project):
        coordinator = LinkingCoordinator(store)
        invoice = run(coordinator.create_linked_invoice_and_transaction(
            invoice_input(project["id"], tax_amount=Decimal("1"), total=Decimal("1"))
        ))

        assert invoice["tax_amount"] == "200.00"
        assert invoice["total"] == "1200.00"
        assert run(store.get_transactions()) == []

    def test_sale_invoice_generates_income(self, store, project):
        coordinator = LinkingCoordinator(store)
        invoice = run(coordinator.create_linked_invoice_and_transaction(
            invoice_input(project["id"]), create_transaction=True
        ))

        transaction = run(store.get_transaction(invoice["linked_transaction_id"]))
        assert transaction["linked_invoice_id"] == invoice["id"]
        assert transaction["type"] == "Gelir"
        assert transaction["amount"] == "1200.00"
        assert transaction["income_kind"] == "Hakediş Geliri"
        assert transaction["is_grubu"] == "Genel Giderler ve Endirekt Giderler"
        assert transaction["rayic_grubu"] == "Genel Giderler ve Endirekt Giderler"

    def test_purchase_invoice_generates_expense(self, store, project):
        coordinator = LinkingCoordinator(store)
        invoice = run(coordinator.create_linked_invoice_and_transaction(
            invoice_input(project["id"], type="Alış"),
            create_transaction=True,
            is_grubu="Mekanik Tesisat",
            rayic_grubu="İşçilik"
        ))

        transaction = run(store.get_transaction(invoice["linked_transaction_id"]))
        assert transaction["type"] == "Gider"
        assert transaction["income_kind"] is None
        assert transaction["is_grubu"] == "Mekanik Tesisat"

    def test_transaction_requires_project(self, store):
        coordinator = LinkingCoordinator(store)

        with pytest.raises(LinkValidationError):
            run(coordinator.create_linked_invoice_and_transaction(
                invoice_input(None), create_transaction=True
            ))

        assert run(store.get_invoices()) == []

    def test_failed_transaction_leaves_nothing(self, store, project, monkeypatch):
        monkeypatch.setattr(store, "create_transaction", _fail)
        coordinator = LinkingCoordinator(store)

        with pytest.raises(LinkedRecordCreationError):
            run(coordinator.create_linked_invoice_and_transaction(
                invoice_input(project["id"]), create_transaction=True
            ))

        assert run(store.get_invoices()) == []

    def test_lost_invoice_back_reference_rolls_back_both(self, store, project, monkeypatch):
        monkeypatch.setattr(store, "update_invoice", _vanish)
        coordinator = LinkingCoordinator(store)

        with pytest.raises(LinkedRecordCreationError):
            run(coordinator.create_linked_invoice_and_transaction(
                invoice_input(project["id"]), create_transaction=True
            ))

        assert run(store.get_invoices()) == []
        assert run(store.get_transactions()) == []

    def test_missing_tax_rate_uses_configured_default(self, store, project):
        coordinator = LinkingCoordinator(store, default_tax_rate=Decimal("10"))
        invoice = run(coordinator.create_linked_invoice_and_transaction(
            invoice_input(project["id"], tax_rate=None)
        ))

        assert invoice["tax_rate"] == "10.00"
        assert invoice["total"] == "1100.00"

    def test_number_used_by_transaction_is_rejected(self, store, project):
        make_transaction(store, project["id"], 100, invoice_number="SF-001")
        coordinator = LinkingCoordinator(store)

        with pytest.raises(DuplicateInvoiceError):
            run(coordinator.create_linked_invoice_and_transaction(
                invoice_input(project["id"]), create_transaction=True
            ))

        assert run(store.get_invoices()) == []


class TestUpdateAndDelete:

    def test_invoice_number_change_checked_against_others(self, store, project):
        coordinator = LinkingCoordinator(store)
        run(coordinator.create_linked_invoice_and_transaction(invoice_input(project["id"])))
        second = run(coordinator.create_linked_invoice_and_transaction(
            invoice_input(project["id"], invoice_number="SF-002")
        ))

        with pytest.raises(DuplicateInvoiceError):
            run(coordinator.update_invoice(second["id"], {"invoice_number": "SF-001"}))

        # keeping its own number is not a conflict
        updated = run(coordinator.update_invoice(second["id"], {"invoice_number": "SF-002", "subtotal": Decimal("500")}))
        assert updated["total"] == "600.00"

    def test_delete_invoice_clears_transaction_link(self, store, project):
        coordinator = LinkingCoordinator(store)
        invoice = run(coordinator.create_linked_invoice_and_transaction(
            invoice_input(project["id"]), create_transaction=True
        ))

        run(coordinator.delete_invoice(invoice["id"]))

        transaction = run(store.get_transaction(invoice["linked_transaction_id"]))
        assert transaction["linked_invoice_id"] is None
        assert run(store.get_invoice(invoice["id"])) is None

    def test_delete_transaction_clears_invoice_link(self, store, project):
        coordinator = LinkingCoordinator(store)
        transaction = run(coordinator.create_linked_transaction_and_invoice(
            transaction_input(project["id"]), create_invoice=True
        ))

        run(coordinator.delete_transaction(transaction["id"]))

        invoice = run(store.get_invoice(transaction["linked_invoice_id"]))
        assert invoice["linked_transaction_id"] is None

    def test_delete_transaction_releases_it_from_hakedis(self, store, project):
        engine = ProgressPaymentEngine(store)
        coordinator = LinkingCoordinator(store, engine)
        first = make_transaction(store, project["id"], 600)
        second = make_transaction(store, project["id"], 400)
        payment = run(engine.create_progress_payment({
            "project_id": project["id"],
            "date": TODAY,
            "transaction_ids": [first["id"], second["id"]],
        }))

        run(coordinator.delete_transaction(first["id"]))

        payment = run(store.get_progress_payment(payment["id"]))
        assert payment["transaction_ids"] == [second["id"]]
        assert payment["amount"] == "400.00"

    def test_amount_edit_refreshes_hakedis(self, store, project):
        engine = ProgressPaymentEngine(store)
        coordinator = LinkingCoordinator(store, engine)
        transaction = make_transaction(store, project["id"], 600)
        payment = run(engine.create_progress_payment({
            "project_id": project["id"],
            "date": TODAY,
            "transaction_ids": [transaction["id"]],
        }))

        run(coordinator.update_transaction(transaction["id"], {"amount": Decimal("750")}))

        payment = run(store.get_progress_payment(payment["id"]))
        assert payment["amount"] == "750.00"
