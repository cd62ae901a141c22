"""
Tests for InventoryService: every movement, its ledger entry and its audit record.

The audit recorder is not started in these tests, so entries are written inline
and can be queried right after each call.
"""
from datetime import datetime, timedelta, timezone

import pytest

from edsupply.core.exceptions import (
    FailedPreconditionError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    UnauthenticatedError,
)
from edsupply.models.enums import SupplyLocation, SupplyStatus, TransactionType
from edsupply.models.supply_transaction import SupplyTransaction


def ledger(database, supply_id):
    with database.session_scope() as session:
        return (
            session.query(SupplyTransaction)
            .filter(SupplyTransaction.supply_id == supply_id)
            .order_by(SupplyTransaction.timestamp)
            .all()
        )


# =============================================================================
# Check-out
# =============================================================================


class TestCheckOut:

    def test_decrements_and_writes_ledger(self, service, make_supply, load_supply, database):
        supply_id = make_supply(current_quantity=10)
        result = service.check_out("nurse-1", supply_id, 3, patient_id="P-100", patient_name="Pat Doe")

        assert result.new_quantity == 7
        assert result.previous_quantity == 10
        assert result.status == SupplyStatus.IN_STOCK
        assert load_supply(supply_id).current_quantity == 7

        entries = ledger(database, supply_id)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.transaction_type == TransactionType.CHECK_OUT
        assert (entry.quantity, entry.previous_quantity, entry.new_quantity) == (3, 10, 7)
        assert entry.user_id == "nurse-1"
        assert entry.user_name == "Riley Nurse"
        assert entry.patient_id == "P-100"

    def test_status_crosses_thresholds(self, service, make_supply):
        supply_id = make_supply(current_quantity=10, minimum_quantity=5, critical_quantity=2)
        assert service.check_out("nurse-1", supply_id, 5).status == SupplyStatus.LOW_STOCK
        assert service.check_out("nurse-1", supply_id, 3).status == SupplyStatus.CRITICAL_STOCK
        assert service.check_out("nurse-1", supply_id, 2).status == SupplyStatus.CRITICAL_STOCK

    def test_result_dict_shape(self, service, make_supply):
        supply_id = make_supply()
        data = service.check_out("nurse-1", supply_id, 1).to_dict()
        assert data["success"] is True
        assert data["supply_id"] == supply_id
        assert data["new_quantity"] == 9
        assert data["status"] == "in_stock"
        assert "timestamp" in data

    def test_insufficient_stock_is_rejected_without_side_effects(
        self, service, make_supply, load_supply, database, audit
    ):
        supply_id = make_supply(current_quantity=2)
        for _ in range(3):
            with pytest.raises(FailedPreconditionError) as exc:
                service.check_out("nurse-1", supply_id, 5)
            assert "Requested: 5, Available: 2" in exc.value.message

        supply = load_supply(supply_id)
        assert supply.current_quantity == 2
        assert supply.version == 1
        assert ledger(database, supply_id) == []

        failures = audit.query(operation="checkout_supply", success=False)
        assert len(failures) == 3
        assert all(row["details"]["available"] == 2 for row in failures)

    def test_checkout_to_zero(self, service, make_supply, load_supply):
        supply_id = make_supply(current_quantity=4)
        result = service.check_out("staff-1", supply_id, 4)
        assert result.new_quantity == 0
        assert result.status == SupplyStatus.CRITICAL_STOCK
        assert load_supply(supply_id).current_quantity == 0

    def test_unauthenticated(self, service, make_supply, audit):
        supply_id = make_supply()
        with pytest.raises(UnauthenticatedError):
            service.check_out(None, supply_id, 1)
        row = audit.query(operation="checkout_supply")[0]
        assert row["actor_id"] is None
        assert row["success"] is False

    @pytest.mark.parametrize("quantity", [0, -1, 2.5, True, "3", None])
    def test_invalid_quantity(self, service, make_supply, quantity):
        supply_id = make_supply()
        with pytest.raises(InvalidArgumentError):
            service.check_out("nurse-1", supply_id, quantity)

    def test_missing_supply_id(self, service):
        with pytest.raises(InvalidArgumentError):
            service.check_out("nurse-1", "", 1)

    def test_unknown_destination(self, service, make_supply):
        supply_id = make_supply()
        with pytest.raises(InvalidArgumentError):
            service.check_out("nurse-1", supply_id, 1, destination="cafeteria")

    def test_not_found(self, service):
        with pytest.raises(NotFoundError):
            service.check_out("nurse-1", "does-not-exist", 1)

    def test_permission_denied_for_viewer(self, service, make_supply, load_supply, audit):
        supply_id = make_supply()
        with pytest.raises(PermissionDeniedError):
            service.check_out("viewer-1", supply_id, 1)
        assert load_supply(supply_id).current_quantity == 10
        row = audit.query(operation="checkout_supply", actor_id="viewer-1")[0]
        assert row["success"] is False
        assert row["severity"] == "warning"

    def test_missing_profile_is_denied(self, service, make_supply):
        supply_id = make_supply()
        with pytest.raises(PermissionDeniedError):
            service.check_out("ghost", supply_id, 1)

    def test_on_order_kept_by_checkout(self, service, make_supply):
        supply_id = make_supply(current_quantity=10, status=SupplyStatus.ON_ORDER)
        assert service.check_out("nurse-1", supply_id, 9).status == SupplyStatus.ON_ORDER

    def test_discontinued_kept_by_checkout(self, service, make_supply):
        supply_id = make_supply(current_quantity=10, status=SupplyStatus.DISCONTINUED)
        assert service.check_out("nurse-1", supply_id, 9).status == SupplyStatus.DISCONTINUED

    def test_unexpected_error_becomes_internal(self, service, make_supply, database, audit, monkeypatch):
        supply_id = make_supply()

        def broken(work, policy):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(database, "run_in_transaction", broken)
        with pytest.raises(InternalError) as exc:
            service.check_out("nurse-1", supply_id, 1)
        assert "disk on fire" not in exc.value.message
        row = audit.query(operation="checkout_supply")[0]
        assert row["error_message"] == "disk on fire"


class TestControlledCheckOut:

    def test_nurse_without_capability_is_denied(self, service, make_supply, load_supply, database, audit):
        supply_id = make_supply(name="Morphine 4mg", is_controlled=True)
        with pytest.raises(PermissionDeniedError) as exc:
            service.check_out("nurse-1", supply_id, 1)
        assert "controlled" in exc.value.message
        assert load_supply(supply_id).current_quantity == 10
        assert ledger(database, supply_id) == []

        row = audit.query(operation="checkout_supply", actor_id="nurse-1")[0]
        assert row["severity"] == "critical"
        assert row["resource"] == "controlled_substance"
        assert row["details"]["is_controlled"] is True

    @pytest.mark.parametrize("actor", ["nurse-cs", "physician-1", "admin-1"])
    def test_authorized_roles(self, service, make_supply, actor):
        supply_id = make_supply(is_controlled=True)
        assert service.check_out(actor, supply_id, 1).new_quantity == 9

    def test_required_signature_also_gates(self, service, make_supply):
        supply_id = make_supply(required_signature=True)
        with pytest.raises(PermissionDeniedError):
            service.check_out("staff-1", supply_id, 1)

    def test_successful_controlled_checkout_audited_as_warning(self, service, make_supply, audit):
        supply_id = make_supply(is_controlled=True)
        service.check_out("physician-1", supply_id, 2)
        row = audit.query(operation="checkout_supply", success=True)[0]
        assert row["severity"] == "warning"


# =============================================================================
# Check-in, restock, return
# =============================================================================


class TestCheckIn:

    def test_round_trip_restores_quantity(self, service, make_supply, load_supply, database):
        supply_id = make_supply(current_quantity=10)
        service.check_out("nurse-1", supply_id, 4)
        result = service.check_in("nurse-1", supply_id, 4)
        assert result.new_quantity == 10
        assert result.status == SupplyStatus.IN_STOCK

        entries = ledger(database, supply_id)
        assert [e.transaction_type for e in entries] == [TransactionType.CHECK_OUT, TransactionType.CHECK_IN]
        assert sum(e.quantity_delta for e in entries) == 0

    def test_sets_restock_date_lot_and_expiration(self, service, make_supply, load_supply, database):
        supply_id = make_supply()
        service.check_in("manager-1", supply_id, 5, lot_number="LOT-9", expiration_date="2031-06-30")
        supply = load_supply(supply_id)
        assert supply.lot_number == "LOT-9"
        assert supply.expiration_date.date().isoformat() == "2031-06-30"
        assert supply.last_restock_date is not None
        assert ledger(database, supply_id)[0].lot_number == "LOT-9"

    def test_unparseable_expiration_is_ignored(self, service, make_supply, load_supply, audit):
        supply_id = make_supply()
        result = service.check_in("manager-1", supply_id, 5, expiration_date="next tuesday")
        assert result.new_quantity == 15
        assert load_supply(supply_id).expiration_date is None
        assert audit.query(operation="checkin_supply")[0]["details"]["expiration_date_ignored"] is True

    def test_staff_cannot_check_in(self, service, make_supply):
        supply_id = make_supply()
        with pytest.raises(PermissionDeniedError):
            service.check_in("staff-1", supply_id, 5)

    def test_outbound_transaction_type_rejected(self, service, make_supply):
        supply_id = make_supply()
        with pytest.raises(InvalidArgumentError):
            service.check_in("manager-1", supply_id, 5, transaction_type="waste")

    def test_restock_records_restock_type_and_clears_on_order(self, service, make_supply, database):
        supply_id = make_supply(current_quantity=0, status=SupplyStatus.ON_ORDER)
        result = service.restock("manager-1", supply_id, 50)
        assert result.status == SupplyStatus.IN_STOCK
        assert ledger(database, supply_id)[0].transaction_type == TransactionType.RESTOCK

    def test_restock_keeps_discontinued(self, service, make_supply):
        supply_id = make_supply(status=SupplyStatus.DISCONTINUED)
        assert service.restock("manager-1", supply_id, 5).status == SupplyStatus.DISCONTINUED

    def test_return_defaults_source(self, service, make_supply, database):
        supply_id = make_supply()
        service.return_supply("nurse-1", supply_id, 2, patient_id="P-7")
        entry = ledger(database, supply_id)[0]
        assert entry.transaction_type == TransactionType.RETURN
        assert entry.source == SupplyLocation.CENTRAL_SUPPLY
        assert entry.patient_id == "P-7"


# =============================================================================
# Waste, adjust, transfer
# =============================================================================


class TestWaste:

    def test_waste_records_reason(self, service, make_supply, database, audit):
        supply_id = make_supply(current_quantity=10)
        result = service.waste("nurse-1", supply_id, 2, "Package torn")
        assert result.new_quantity == 8
        entry = ledger(database, supply_id)[0]
        assert entry.transaction_type == TransactionType.WASTE
        assert "Package torn" in entry.notes
        assert audit.query(operation="waste_supply")[0]["severity"] == "warning"

    def test_reason_required(self, service, make_supply):
        supply_id = make_supply()
        with pytest.raises(InvalidArgumentError):
            service.waste("nurse-1", supply_id, 1, "   ")

    def test_insufficient(self, service, make_supply):
        supply_id = make_supply(current_quantity=1)
        with pytest.raises(FailedPreconditionError):
            service.waste("nurse-1", supply_id, 2, "expired")

    def test_controlled_waste_needs_manage_and_controlled_access(self, service, make_supply, audit):
        supply_id = make_supply(is_controlled=True)
        # controlled access but no manage permission
        with pytest.raises(PermissionDeniedError):
            service.waste("physician-1", supply_id, 1, "dropped vial")
        # manage permission but no controlled access
        with pytest.raises(PermissionDeniedError):
            service.waste("manager-1", supply_id, 1, "dropped vial")
        assert service.waste("admin-1", supply_id, 1, "dropped vial").new_quantity == 9
        failures = audit.query(operation="waste_supply", success=False)
        assert {row["severity"] for row in failures} == {"critical"}

    @pytest.mark.parametrize("actor_id", ["viewer-1", "ghost-1"])
    def test_denied_before_supply_lookup(self, service, make_supply, actor_id):
        supply_id = make_supply()
        with pytest.raises(PermissionDeniedError):
            service.waste(actor_id, "nope", 1, "spilled")
        with pytest.raises(PermissionDeniedError):
            service.waste(actor_id, supply_id, 1, "spilled")


class TestAdjust:

    def test_absolute_set_up_and_down(self, service, make_supply, database):
        supply_id = make_supply(current_quantity=10)
        down = service.adjust_inventory("manager-1", supply_id, 4, "Cycle count")
        assert (down.previous_quantity, down.new_quantity) == (10, 4)
        up = service.adjust_inventory("manager-1", supply_id, 25, "Found a case")
        assert up.new_quantity == 25

        entries = ledger(database, supply_id)
        assert [e.quantity for e in entries] == [6, 21]
        assert [e.quantity_delta for e in entries] == [-6, 21]
        assert entries[0].notes == "Cycle count"

    def test_adjust_to_zero_allowed(self, service, make_supply):
        supply_id = make_supply()
        assert service.adjust_inventory("admin-1", supply_id, 0, "Recall").status == SupplyStatus.CRITICAL_STOCK

    def test_negative_rejected(self, service, make_supply):
        supply_id = make_supply()
        with pytest.raises(InvalidArgumentError):
            service.adjust_inventory("manager-1", supply_id, -1, "oops")

    def test_nurse_cannot_adjust(self, service, make_supply, audit):
        supply_id = make_supply()
        with pytest.raises(PermissionDeniedError):
            service.adjust_inventory("nurse-1", supply_id, 3, "count")
        assert audit.query(operation="adjust_inventory")[0]["severity"] == "critical"


class TestTransfer:

    def test_full_transfer_moves_location(self, service, make_supply, load_supply, database):
        supply_id = make_supply(current_quantity=6, location=SupplyLocation.CENTRAL_SUPPLY)
        result = service.transfer_supply("nurse-1", supply_id, 6, "central_supply", "trauma_room")
        assert result.extra["new_location"] == "trauma_room"
        supply = load_supply(supply_id)
        assert supply.location == SupplyLocation.TRAUMA_ROOM
        assert supply.current_quantity == 6

        entry = ledger(database, supply_id)[0]
        assert entry.transaction_type == TransactionType.TRANSFER
        assert entry.quantity_delta == 0
        assert (entry.source, entry.destination) == (SupplyLocation.CENTRAL_SUPPLY, SupplyLocation.TRAUMA_ROOM)

    def test_partial_transfer_keeps_location(self, service, make_supply, load_supply, database):
        supply_id = make_supply(current_quantity=10, location=SupplyLocation.CENTRAL_SUPPLY)
        service.transfer_supply("nurse-1", supply_id, 4, "central_supply", "icu")
        supply = load_supply(supply_id)
        assert supply.location == SupplyLocation.CENTRAL_SUPPLY
        assert supply.current_quantity == 10
        assert len(ledger(database, supply_id)) == 1

    def test_wrong_source(self, service, make_supply, audit):
        supply_id = make_supply(location=SupplyLocation.ICU)
        with pytest.raises(FailedPreconditionError) as exc:
            service.transfer_supply("nurse-1", supply_id, 1, "central_supply", "trauma_room")
        assert "icu" in exc.value.message
        assert audit.query(operation="transfer_supply")[0]["details"]["actual_location"] == "icu"

    def test_same_source_and_destination(self, service, make_supply):
        supply_id = make_supply(location=SupplyLocation.ICU)
        with pytest.raises(InvalidArgumentError):
            service.transfer_supply("nurse-1", supply_id, 1, "icu", "icu")

    def test_more_than_available(self, service, make_supply):
        supply_id = make_supply(current_quantity=3, location=SupplyLocation.ICU)
        with pytest.raises(FailedPreconditionError):
            service.transfer_supply("nurse-1", supply_id, 4, "icu", "trauma_room")

    def test_staff_cannot_transfer(self, service, make_supply):
        supply_id = make_supply(location=SupplyLocation.ICU)
        with pytest.raises(PermissionDeniedError):
            service.transfer_supply("staff-1", supply_id, 1, "icu", "trauma_room")


# =============================================================================
# Ledger / state consistency
# =============================================================================


def test_ledger_replays_to_current_quantity(service, make_supply, load_supply, database):
    supply_id = make_supply(current_quantity=20, location=SupplyLocation.CENTRAL_SUPPLY)
    service.check_out("nurse-1", supply_id, 5)
    service.restock("manager-1", supply_id, 12)
    service.waste("nurse-1", supply_id, 3, "contaminated")
    service.transfer_supply("nurse-1", supply_id, 2, "central_supply", "icu")
    service.adjust_inventory("manager-1", supply_id, 19, "count")
    service.return_supply("nurse-1", supply_id, 1)
    with pytest.raises(FailedPreconditionError):
        service.check_out("nurse-1", supply_id, 500)

    entries = ledger(database, supply_id)
    assert len(entries) == 6
    assert 20 + sum(e.quantity_delta for e in entries) == load_supply(supply_id).current_quantity
    for earlier, later in zip(entries, entries[1:]):
        assert later.previous_quantity == earlier.new_quantity


# =============================================================================
# Catalogue management
# =============================================================================


class TestCreateSupply:

    def test_creates_with_initial_ledger_entry(self, service, database):
        created = service.create_supply("manager-1", {
            "name": "IV Start Kit", "category": "disposable", "unit": "kit",
            "current_quantity": 30, "minimum_quantity": 10, "critical_quantity": 4,
            "expiration_date": "2030-01-01",
        })
        assert created["status"] == "in_stock"
        assert created["location"] == "central_supply"
        entries = ledger(database, created["id"])
        assert len(entries) == 1
        assert entries[0].transaction_type == TransactionType.RESTOCK
        assert entries[0].notes == "Initial inventory creation"

    def test_zero_quantity_has_no_ledger_entry(self, service, database):
        created = service.create_supply("admin-1", {"name": "Splint", "minimum_quantity": 2})
        assert created["status"] == "critical_stock"
        assert ledger(database, created["id"]) == []

    def test_rejects_critical_above_minimum(self, service):
        with pytest.raises(InvalidArgumentError):
            service.create_supply("admin-1", {"name": "Gauze", "minimum_quantity": 2, "critical_quantity": 5})

    def test_rejects_unknown_category(self, service):
        with pytest.raises(InvalidArgumentError):
            service.create_supply("admin-1", {"name": "Gauze", "category": "snacks"})

    def test_requires_manage(self, service):
        with pytest.raises(PermissionDeniedError):
            service.create_supply("nurse-1", {"name": "Gauze"})


class TestUpdateSupply:

    def test_threshold_change_rederives_status(self, service, make_supply):
        supply_id = make_supply(current_quantity=8, minimum_quantity=5, critical_quantity=2)
        updated = service.update_supply("manager-1", supply_id, {"minimum_quantity": 10})
        assert updated["status"] == "low_stock"

    def test_invalid_threshold_combination(self, service, make_supply):
        supply_id = make_supply(minimum_quantity=5, critical_quantity=2)
        with pytest.raises(InvalidArgumentError):
            service.update_supply("manager-1", supply_id, {"critical_quantity": 6})

    def test_quantity_not_editable(self, service, make_supply):
        supply_id = make_supply()
        with pytest.raises(InvalidArgumentError):
            service.update_supply("manager-1", supply_id, {"current_quantity": 99})

    @pytest.mark.parametrize("field", [
        "category", "description", "unit", "location", "is_controlled", "required_signature", "status",
    ])
    def test_null_for_required_field_rejected(self, service, make_supply, load_supply, audit, field):
        supply_id = make_supply()
        with pytest.raises(InvalidArgumentError, match=f"{field} cannot be null"):
            service.update_supply("admin-1", supply_id, {field: None})
        assert load_supply(supply_id).location == SupplyLocation.EMERGENCY_DEPT
        assert audit.query(operation="update_supply")[0]["success"] is False

    def test_null_for_optional_field_clears_it(self, service, make_supply):
        supply_id = make_supply(notes="check seal")
        assert service.update_supply("manager-1", supply_id, {"notes": None})["notes"] is None

    def test_set_and_clear_on_order(self, service, make_supply):
        supply_id = make_supply(current_quantity=3, minimum_quantity=5, critical_quantity=1)
        assert service.update_supply("manager-1", supply_id, {"status": "on_order"})["status"] == "on_order"
        assert service.update_supply("manager-1", supply_id, {"status": "in_stock"})["status"] == "low_stock"

    def test_metadata_edit_keeps_administrative_status(self, service, make_supply):
        supply_id = make_supply(status=SupplyStatus.ON_ORDER)
        updated = service.update_supply("manager-1", supply_id, {"notes": "vendor delayed"})
        assert updated["status"] == "on_order"

    def test_discontinue(self, service, make_supply, audit):
        supply_id = make_supply(notes="bulk item")
        result = service.discontinue_supply("admin-1", supply_id)
        assert result["status"] == "discontinued"
        assert result["notes"].startswith("bulk item\nDiscontinued: ")
        assert audit.query(operation="discontinue_supply")[0]["success"] is True

    def test_delete_keeps_ledger(self, service, make_supply, database):
        supply_id = make_supply()
        service.check_out("nurse-1", supply_id, 1)
        service.delete_supply("admin-1", supply_id)
        with pytest.raises(NotFoundError):
            service.get_supply("admin-1", supply_id)
        assert len(ledger(database, supply_id)) == 1

    def test_delete_missing(self, service):
        with pytest.raises(NotFoundError):
            service.delete_supply("admin-1", "nope")


# =============================================================================
# Reads
# =============================================================================


class TestReads:

    def test_list_filters(self, service, make_supply):
        make_supply(name="Gauze Pads", location=SupplyLocation.ICU)
        make_supply(name="Saline Flush", location=SupplyLocation.TRAUMA_ROOM)
        assert [s["name"] for s in service.list_supplies("viewer-1", location="icu")] == ["Gauze Pads"]
        assert [s["name"] for s in service.list_supplies("viewer-1", search="saline")] == ["Saline Flush"]
        assert len(service.list_supplies("viewer-1", limit=1)) == 1

    def test_reads_need_a_profile(self, service):
        with pytest.raises(UnauthenticatedError):
            service.list_supplies(None)
        with pytest.raises(PermissionDeniedError):
            service.list_supplies("ghost")

    def test_transactions_by_patient(self, service, make_supply):
        a = make_supply(name="A")
        b = make_supply(name="B")
        service.check_out("nurse-1", a, 1, patient_id="P-1")
        service.check_out("nurse-1", b, 2, patient_id="P-1")
        service.check_out("nurse-1", b, 1, patient_id="P-2")
        rows = service.list_transactions("viewer-1", patient_id="P-1")
        assert {r["supply_id"] for r in rows} == {a, b}
        assert all(r["transaction_type"] == "check_out" for r in rows)

    def test_low_stock_report(self, service, make_supply):
        make_supply(name="Plenty", current_quantity=50)
        make_supply(name="Low", current_quantity=4, minimum_quantity=5, critical_quantity=2)
        make_supply(name="Critical", current_quantity=1, minimum_quantity=5, critical_quantity=2)
        report = service.get_low_stock_supplies("viewer-1", include_details=False)
        assert report["low_stock_count"] == 1
        assert report["critical_stock_count"] == 1
        assert [s["name"] for s in report["supplies"]] == ["Critical", "Low"]
