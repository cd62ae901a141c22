"""
Status consistency outside InventoryService, and ledger/audit immutability.
"""
import pytest
from sqlalchemy import text

from edsupply.core.exceptions import AuditImmutabilityError, LedgerImmutabilityError
from edsupply.db.triggers import reconcile_supply_statuses
from edsupply.models.audit_log import AuditLog
from edsupply.models.enums import SupplyStatus
from edsupply.models.supply import Supply
from edsupply.models.supply_transaction import SupplyTransaction


class TestStatusTrigger:

    def test_direct_quantity_write_rederives_status(self, database, make_supply, load_supply):
        supply_id = make_supply(current_quantity=50, minimum_quantity=10, critical_quantity=3)
        with database.session_scope() as session:
            supply = session.get(Supply, supply_id)
            supply.current_quantity = 2
        supply = load_supply(supply_id)
        assert supply.status == SupplyStatus.CRITICAL_STOCK

    def test_administrative_status_untouched(self, database, make_supply, load_supply):
        supply_id = make_supply(current_quantity=50, status=SupplyStatus.ON_ORDER)
        with database.session_scope() as session:
            session.get(Supply, supply_id).current_quantity = 1
        assert load_supply(supply_id).status == SupplyStatus.ON_ORDER

    def test_no_quantity_change_is_a_no_op(self, database, make_supply, load_supply):
        # stored status deliberately inconsistent
        supply_id = make_supply(current_quantity=50, status=SupplyStatus.LOW_STOCK)
        with database.session_scope() as session:
            session.get(Supply, supply_id).notes = "relabelled"
        assert load_supply(supply_id).status == SupplyStatus.LOW_STOCK

    def test_reconcile_fixes_raw_sql_writes(self, database, make_supply, load_supply):
        drifted = make_supply(name="Drifted", current_quantity=50)
        steady = make_supply(name="Steady", current_quantity=50)
        on_order = make_supply(name="Ordered", current_quantity=50, status=SupplyStatus.ON_ORDER)
        with database.session_scope() as session:
            session.execute(
                text("UPDATE medical_supplies SET current_quantity = 0 WHERE id IN (:a, :b)"),
                {"a": drifted, "b": on_order},
            )
        assert load_supply(drifted).status == SupplyStatus.IN_STOCK

        with database.session_scope() as session:
            corrected = reconcile_supply_statuses(session)

        assert corrected == [drifted]
        assert load_supply(drifted).status == SupplyStatus.CRITICAL_STOCK
        assert load_supply(steady).status == SupplyStatus.IN_STOCK
        assert load_supply(on_order).status == SupplyStatus.ON_ORDER


class TestImmutability:

    def test_ledger_entries_cannot_be_updated(self, service, make_supply, database):
        supply_id = make_supply()
        service.check_out("nurse-1", supply_id, 1)
        with pytest.raises(LedgerImmutabilityError):
            with database.session_scope() as session:
                entry = session.query(SupplyTransaction).filter_by(supply_id=supply_id).one()
                entry.quantity = 100

    def test_ledger_entries_cannot_be_deleted(self, service, make_supply, database):
        supply_id = make_supply()
        service.check_out("nurse-1", supply_id, 1)
        with pytest.raises(LedgerImmutabilityError):
            with database.session_scope() as session:
                session.delete(session.query(SupplyTransaction).filter_by(supply_id=supply_id).one())
        with database.session_scope() as session:
            assert session.query(SupplyTransaction).filter_by(supply_id=supply_id).count() == 1

    def test_audit_entries_cannot_be_updated(self, audit, database):
        audit.record("checkout_supply", "nurse-1", {}, True)
        with pytest.raises(AuditImmutabilityError):
            with database.session_scope() as session:
                session.query(AuditLog).first().success = False
