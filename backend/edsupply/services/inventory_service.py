"""
Inventory mutation engine for medical supplies.

Every quantity change goes through this module. Each operation follows the
same pipeline:

    validate input
      -> resolve actor profile, check permission (and controlled-substance access)
      -> optimistic pre-check against a fresh read (fast feedback)
      -> atomic unit: re-read, authoritative re-check, update supply,
         append ledger entry   (retried on version conflict)
      -> audit record (best-effort, outside the atomic unit)

SAFETY MODEL:
- The pre-check is an optimisation. The in-transaction re-check is what stops
  two concurrent checkouts from over-drawing stock.
- Supply and ledger are written all-or-nothing.
- Every attempt, including rejected ones, is audited before the error is raised.
- Unexpected errors are logged and surfaced as a generic `internal` error.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from edsupply.core.audit import AuditRecorder
from edsupply.core.clock import Clock, ensure_utc, utcnow
from edsupply.core.exceptions import (
    FailedPreconditionError,
    InvalidArgumentError,
    InventoryError,
    NotFoundError,
    PermissionDeniedError,
    UnauthenticatedError,
    internal_error,
)
from edsupply.core.permissions import (
    ActorProfile,
    OperationClass,
    PermissionOracle,
    permits,
    permits_controlled_substance,
)
from edsupply.db.session import Database, RetryPolicy
from edsupply.models.enums import (
    AuditSeverity,
    INBOUND_TRANSACTION_TYPES,
    SupplyCategory,
    SupplyLocation,
    SupplyStatus,
    SupplyUnit,
    TransactionType,
)
from edsupply.models.supply import Supply
from edsupply.services import ledger_service
from edsupply.services.status_deriver import derive, is_administrative, next_status, validate_thresholds

logger = logging.getLogger(__name__)


# ==============================================================================
# RESULT / SNAPSHOT TYPES
# ==============================================================================

@dataclass
class MutationResult:
    supply_id: str
    new_quantity: int
    status: SupplyStatus
    timestamp: datetime
    previous_quantity: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        result = {
            "success": True,
            "supply_id": self.supply_id,
            "new_quantity": self.new_quantity,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.previous_quantity is not None:
            result["previous_quantity"] = self.previous_quantity
        result.update(self.extra)
        return result


@dataclass(frozen=True)
class SupplySnapshot:
    """Plain copy of a supply row, safe to use after the session closes."""

    id: str
    name: str
    current_quantity: int
    minimum_quantity: int
    critical_quantity: int
    status: SupplyStatus
    location: SupplyLocation
    is_controlled: bool
    required_signature: bool
    expiration_date: Optional[datetime]

    @classmethod
    def of(cls, supply: Supply) -> "SupplySnapshot":
        return cls(
            id=supply.id,
            name=supply.name,
            current_quantity=supply.current_quantity,
            minimum_quantity=supply.minimum_quantity,
            critical_quantity=supply.critical_quantity,
            status=supply.status,
            location=supply.location,
            is_controlled=bool(supply.is_controlled),
            required_signature=bool(supply.required_signature),
            expiration_date=ensure_utc(supply.expiration_date),
        )


class _Attempt:
    """Mutable audit context for one operation call."""

    def __init__(self, details: Dict[str, Any]):
        self.details = details
        self.severity: Optional[AuditSeverity] = None
        self.resource: Optional[str] = "medical_supplies"


# Fields an administrator may edit through update_supply
EDITABLE_FIELDS = frozenset({
    "name", "description", "category", "manufacturer", "model_number", "lot_number",
    "unit", "unit_price", "location", "expiration_date", "minimum_quantity",
    "critical_quantity", "is_controlled", "required_signature", "notes", "tags", "status",
})

# Editable fields backed by NOT NULL columns
NON_NULLABLE_FIELDS = frozenset({
    "name", "description", "category", "unit", "location", "minimum_quantity",
    "critical_quantity", "is_controlled", "required_signature", "status",
})


def supply_to_dict(supply: Supply) -> dict:
    return {
        "id": supply.id,
        "name": supply.name,
        "description": supply.description,
        "category": supply.category.value,
        "manufacturer": supply.manufacturer,
        "model_number": supply.model_number,
        "lot_number": supply.lot_number,
        "unit": supply.unit.value,
        "unit_price": float(supply.unit_price) if supply.unit_price is not None else None,
        "location": supply.location.value,
        "expiration_date": _iso(supply.expiration_date),
        "last_restock_date": _iso(supply.last_restock_date),
        "current_quantity": supply.current_quantity,
        "minimum_quantity": supply.minimum_quantity,
        "critical_quantity": supply.critical_quantity,
        "status": supply.status.value,
        "is_controlled": bool(supply.is_controlled),
        "required_signature": bool(supply.required_signature),
        "notes": supply.notes,
        "tags": supply.tags or [],
        "last_updated": _iso(supply.last_updated),
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = ensure_utc(value)
    return value.isoformat() if value else None


# ==============================================================================
# INPUT COERCION
# ==============================================================================

def _require_actor(actor_id: Optional[str], action: str) -> None:
    if not actor_id:
        raise UnauthenticatedError(f"You must be logged in to {action}")


def _require_supply_id(supply_id: Optional[str]) -> None:
    if not supply_id or not isinstance(supply_id, str):
        raise InvalidArgumentError("Invalid arguments: supply_id is required")


def _require_positive_int(value: Any, name: str = "quantity") -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidArgumentError(f"Invalid arguments: {name} must be an integer > 0")
    return value


def _require_non_negative_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidArgumentError(f"Invalid arguments: {name} must be an integer >= 0")
    return value


def _require_text(value: Optional[str], name: str) -> str:
    if not value or not str(value).strip():
        raise InvalidArgumentError(f"Invalid arguments: {name} is required")
    return str(value).strip()


def _coerce_enum(enum_cls, value: Any, name: str):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidArgumentError(f"Invalid {name} {value!r}. Allowed: {allowed}")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept datetime, date or ISO-8601 text. Raises ValueError on anything else."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(text))
    raise ValueError(f"Unsupported date value: {value!r}")


def _coerce_price(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidArgumentError(f"Invalid unit_price {value!r}")
    if price < 0:
        raise InvalidArgumentError("unit_price must be >= 0")
    return price


# ==============================================================================
# SERVICE
# ==============================================================================

class InventoryService:
    def __init__(
        self,
        database: Database,
        permissions: PermissionOracle,
        audit: AuditRecorder,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Clock = utcnow,
    ):
        self._db = database
        self._permissions = permissions
        self._audit = audit
        self._retry = retry_policy or RetryPolicy()
        self._clock = clock

    # ------------------------------------------------------------------
    # Shared pipeline pieces
    # ------------------------------------------------------------------

    @contextmanager
    def _audited(self, operation: str, actor_id: Optional[str], details: Dict[str, Any],
                 failure_message: str) -> Iterator[_Attempt]:
        attempt = _Attempt(details)
        try:
            yield attempt
        except InventoryError as e:
            self._audit.record(
                operation, actor_id, attempt.details, False,
                error_message=e.message, severity=attempt.severity, resource=attempt.resource,
            )
            raise
        except Exception as e:
            logger.error(f"Error in {operation}: {e}", exc_info=True)
            self._audit.record(
                operation, actor_id, attempt.details, False,
                error_message=str(e) or type(e).__name__, severity=attempt.severity,
                resource=attempt.resource,
            )
            raise internal_error(e, failure_message) from e
        else:
            self._audit.record(
                operation, actor_id, attempt.details, True,
                severity=attempt.severity, resource=attempt.resource,
            )

    def _profile(self, actor_id: str) -> Optional[ActorProfile]:
        return self._permissions.resolve(actor_id)

    def _authorize(self, profile: Optional[ActorProfile], operation: OperationClass, message: str) -> ActorProfile:
        if profile is None or not permits(profile, operation):
            raise PermissionDeniedError(message)
        return profile

    def _snapshot(self, supply_id: str) -> SupplySnapshot:
        with self._db.session_scope() as session:
            supply = session.get(Supply, supply_id)
            if supply is None:
                raise NotFoundError("Supply not found")
            return SupplySnapshot.of(supply)

    @staticmethod
    def _locked_supply(session: Session, supply_id: str) -> Supply:
        """Fresh read inside the atomic unit. The version column guards the write."""
        supply = session.get(Supply, supply_id, populate_existing=True)
        if supply is None:
            raise NotFoundError("Supply not found during transaction")
        return supply

    @staticmethod
    def _require_available(requested: int, available: int) -> None:
        if available < requested:
            raise FailedPreconditionError(
                f"Not enough inventory. Requested: {requested}, Available: {available}"
            )

    def _gate_controlled(self, profile: ActorProfile, attempt: _Attempt, message: str) -> None:
        attempt.details["is_controlled"] = True
        attempt.resource = "controlled_substance"
        if not permits_controlled_substance(profile):
            attempt.severity = AuditSeverity.CRITICAL
            raise PermissionDeniedError(message)
        attempt.severity = AuditSeverity.WARNING

    # ------------------------------------------------------------------
    # Outbound movements
    # ------------------------------------------------------------------

    def check_out(
        self,
        actor_id: Optional[str],
        supply_id: str,
        quantity: int,
        *,
        patient_id: Optional[str] = None,
        patient_name: Optional[str] = None,
        destination: Optional[Any] = None,
        notes: Optional[str] = None,
    ) -> MutationResult:
        """Take `quantity` units out of stock, optionally against a patient."""
        details = {
            "supply_id": supply_id, "quantity": quantity, "patient_id": patient_id,
            "destination": destination, "notes": notes,
        }
        with self._audited("checkout_supply", actor_id, details,
                           "An internal error occurred during checkout") as attempt:
            _require_actor(actor_id, "check out supplies")
            _require_supply_id(supply_id)
            _require_positive_int(quantity)
            destination = _coerce_enum(SupplyLocation, destination, "destination")

            profile = self._authorize(
                self._profile(actor_id), OperationClass.CHECKOUT,
                "You do not have permission to check out supplies",
            )
            snapshot = self._snapshot(supply_id)
            if snapshot.is_controlled or snapshot.required_signature:
                self._gate_controlled(
                    profile, attempt, "You do not have permission to check out controlled substances"
                )
            if snapshot.current_quantity < quantity:
                attempt.details["available"] = snapshot.current_quantity
            self._require_available(quantity, snapshot.current_quantity)

            def work(session: Session) -> MutationResult:
                supply = self._locked_supply(session, supply_id)
                self._require_available(quantity, supply.current_quantity)
                now = self._clock()
                previous = supply.current_quantity
                supply.current_quantity = previous - quantity
                supply.status = next_status(
                    supply.status, supply.current_quantity, supply.minimum_quantity, supply.critical_quantity
                )
                supply.last_updated = now
                ledger_service.append(
                    session,
                    supply_id=supply.id, supply_name=supply.name,
                    transaction_type=TransactionType.CHECK_OUT,
                    quantity=quantity, previous_quantity=previous, new_quantity=supply.current_quantity,
                    user_id=profile.id, user_name=profile.display_name, timestamp=now,
                    patient_id=patient_id, patient_name=patient_name,
                    destination=destination, notes=notes,
                )
                session.flush()
                return MutationResult(supply.id, supply.current_quantity, supply.status, now, previous)

            result = self._db.run_in_transaction(work, self._retry)
            attempt.details.update(new_quantity=result.new_quantity, new_status=result.status.value)
            return result

    def waste(self, actor_id: Optional[str], supply_id: str, quantity: int, reason: str) -> MutationResult:
        """Discard units (damaged, contaminated, opened). Controlled supplies need manage + controlled access."""
        details = {"supply_id": supply_id, "quantity": quantity, "reason": reason}
        with self._audited("waste_supply", actor_id, details,
                           "An internal error occurred during waste operation") as attempt:
            _require_actor(actor_id, "waste supplies")
            _require_supply_id(supply_id)
            _require_positive_int(quantity)
            reason = _require_text(reason, "reason")

            profile = self._profile(actor_id)
            if profile is None or not (
                permits(profile, OperationClass.CHECKOUT) or permits(profile, OperationClass.MANAGE)
            ):
                raise PermissionDeniedError("You do not have permission to waste supplies")
            snapshot = self._snapshot(supply_id)
            if snapshot.is_controlled:
                self._gate_controlled(
                    profile, attempt, "You do not have permission to waste controlled substances"
                )
                self._authorize(profile, OperationClass.MANAGE, "You do not have permission to waste supplies")
            else:
                self._authorize(profile, OperationClass.CHECKOUT, "You do not have permission to waste supplies")
            if snapshot.current_quantity < quantity:
                attempt.details["available"] = snapshot.current_quantity
            self._require_available(quantity, snapshot.current_quantity)

            def work(session: Session) -> MutationResult:
                supply = self._locked_supply(session, supply_id)
                self._require_available(quantity, supply.current_quantity)
                now = self._clock()
                previous = supply.current_quantity
                supply.current_quantity = previous - quantity
                supply.status = next_status(
                    supply.status, supply.current_quantity, supply.minimum_quantity, supply.critical_quantity
                )
                supply.last_updated = now
                ledger_service.append(
                    session,
                    supply_id=supply.id, supply_name=supply.name,
                    transaction_type=TransactionType.WASTE,
                    quantity=quantity, previous_quantity=previous, new_quantity=supply.current_quantity,
                    user_id=profile.id, user_name=profile.display_name, timestamp=now,
                    notes=f"Reason for waste: {reason}",
                )
                session.flush()
                return MutationResult(supply.id, supply.current_quantity, supply.status, now, previous)

            result = self._db.run_in_transaction(work, self._retry)
            attempt.details.update(new_quantity=result.new_quantity, new_status=result.status.value)
            return result

    # ------------------------------------------------------------------
    # Inbound movements
    # ------------------------------------------------------------------

    def check_in(
        self,
        actor_id: Optional[str],
        supply_id: str,
        quantity: int,
        *,
        transaction_type: Any = TransactionType.CHECK_IN,
        source: Optional[Any] = None,
        notes: Optional[str] = None,
        lot_number: Optional[str] = None,
        expiration_date: Optional[Any] = None,
        patient_id: Optional[str] = None,
        patient_name: Optional[str] = None,
    ) -> MutationResult:
        """
        Put `quantity` units into stock.

        restock and return use this same path with a different ledger type.
        An unparseable expiration_date is logged and ignored.
        """
        details = {
            "supply_id": supply_id, "quantity": quantity, "transaction_type": transaction_type,
            "source": source, "notes": notes, "lot_number": lot_number,
            "expiration_date": expiration_date, "patient_id": patient_id,
        }
        with self._audited("checkin_supply", actor_id, details,
                           "An internal error occurred during check-in") as attempt:
            _require_actor(actor_id, "check in supplies")
            _require_supply_id(supply_id)
            _require_positive_int(quantity)
            transaction_type = _coerce_enum(TransactionType, transaction_type, "transaction_type")
            if transaction_type not in INBOUND_TRANSACTION_TYPES:
                raise InvalidArgumentError(
                    f"transaction_type must be one of: {', '.join(t.value for t in INBOUND_TRANSACTION_TYPES)}"
                )
            source = _coerce_enum(SupplyLocation, source, "source")

            profile = self._authorize(
                self._profile(actor_id), OperationClass.CHECKIN,
                "You do not have permission to check in supplies",
            )
            self._snapshot(supply_id)

            parsed_expiration = None
            if expiration_date:
                try:
                    parsed_expiration = parse_timestamp(expiration_date)
                except ValueError as e:
                    logger.warning(f"Invalid expiration date format for supply {supply_id}: {e}")
                    attempt.details["expiration_date_ignored"] = True

            def work(session: Session) -> MutationResult:
                supply = self._locked_supply(session, supply_id)
                now = self._clock()
                previous = supply.current_quantity
                supply.current_quantity = previous + quantity
                supply.status = next_status(
                    supply.status, supply.current_quantity, supply.minimum_quantity,
                    supply.critical_quantity, inbound=True,
                )
                supply.last_updated = now
                supply.last_restock_date = now
                if lot_number:
                    supply.lot_number = lot_number
                if parsed_expiration:
                    supply.expiration_date = parsed_expiration
                ledger_service.append(
                    session,
                    supply_id=supply.id, supply_name=supply.name,
                    transaction_type=transaction_type,
                    quantity=quantity, previous_quantity=previous, new_quantity=supply.current_quantity,
                    user_id=profile.id, user_name=profile.display_name, timestamp=now,
                    patient_id=patient_id, patient_name=patient_name, source=source, notes=notes,
                    lot_number=lot_number, expiration_date=parsed_expiration,
                )
                session.flush()
                return MutationResult(supply.id, supply.current_quantity, supply.status, now, previous)

            result = self._db.run_in_transaction(work, self._retry)
            attempt.details.update(new_quantity=result.new_quantity, new_status=result.status.value)
            return result

    def restock(self, actor_id: Optional[str], supply_id: str, quantity: int, **options) -> MutationResult:
        return self.check_in(actor_id, supply_id, quantity, transaction_type=TransactionType.RESTOCK, **options)

    def return_supply(self, actor_id: Optional[str], supply_id: str, quantity: int, **options) -> MutationResult:
        """Unused units coming back (e.g. from a patient bay)."""
        options.setdefault("source", SupplyLocation.CENTRAL_SUPPLY)
        return self.check_in(actor_id, supply_id, quantity, transaction_type=TransactionType.RETURN, **options)

    # ------------------------------------------------------------------
    # Administrative movements
    # ------------------------------------------------------------------

    def adjust_inventory(self, actor_id: Optional[str], supply_id: str, new_quantity: int, reason: str) -> MutationResult:
        """Set an absolute quantity after a physical count. Only absolute (non-delta) operation."""
        details = {"supply_id": supply_id, "new_quantity": new_quantity, "reason": reason}
        with self._audited("adjust_inventory", actor_id, details,
                           "An internal error occurred during inventory adjustment") as attempt:
            _require_actor(actor_id, "adjust inventory")
            _require_supply_id(supply_id)
            _require_non_negative_int(new_quantity, "new_quantity")
            reason = _require_text(reason, "reason")

            profile = self._authorize(
                self._profile(actor_id), OperationClass.MANAGE,
                "You do not have permission to adjust inventory",
            )
            self._snapshot(supply_id)

            def work(session: Session) -> MutationResult:
                supply = self._locked_supply(session, supply_id)
                now = self._clock()
                previous = supply.current_quantity
                supply.current_quantity = new_quantity
                supply.status = next_status(
                    supply.status, new_quantity, supply.minimum_quantity, supply.critical_quantity,
                    inbound=new_quantity > previous,
                )
                supply.last_updated = now
                ledger_service.append(
                    session,
                    supply_id=supply.id, supply_name=supply.name,
                    transaction_type=TransactionType.ADJUST,
                    quantity=abs(new_quantity - previous), previous_quantity=previous, new_quantity=new_quantity,
                    user_id=profile.id, user_name=profile.display_name, timestamp=now,
                    notes=reason,
                )
                session.flush()
                return MutationResult(supply.id, new_quantity, supply.status, now, previous)

            result = self._db.run_in_transaction(work, self._retry)
            attempt.details.update(previous_quantity=result.previous_quantity, new_status=result.status.value)
            return result

    def transfer_supply(
        self,
        actor_id: Optional[str],
        supply_id: str,
        quantity: int,
        source_location: Any,
        destination_location: Any,
        notes: Optional[str] = None,
    ) -> MutationResult:
        """
        Record a move between locations.

        A supply has a single location: it follows the transfer only when the
        whole quantity moves. Partial transfers are recorded in the ledger but
        leave the location unchanged. Quantity never changes.
        """
        details = {
            "supply_id": supply_id, "quantity": quantity, "source_location": source_location,
            "destination_location": destination_location, "notes": notes,
        }
        with self._audited("transfer_supply", actor_id, details,
                           "An internal error occurred during transfer") as attempt:
            _require_actor(actor_id, "transfer supplies")
            _require_supply_id(supply_id)
            _require_positive_int(quantity)
            if not source_location or not destination_location:
                raise InvalidArgumentError(
                    "Invalid arguments: source_location and destination_location are required"
                )
            source = _coerce_enum(SupplyLocation, source_location, "source_location")
            destination = _coerce_enum(SupplyLocation, destination_location, "destination_location")
            if source == destination:
                raise InvalidArgumentError("Source and destination locations must be different")

            profile = self._authorize(
                self._profile(actor_id), OperationClass.CHECKIN,
                "You do not have permission to transfer supplies",
            )
            snapshot = self._snapshot(supply_id)
            if snapshot.location != source:
                attempt.details["actual_location"] = snapshot.location.value
                raise FailedPreconditionError(
                    f"Supply is not at the specified source location. Current location: {snapshot.location.value}"
                )
            if snapshot.current_quantity < quantity:
                attempt.details["available"] = snapshot.current_quantity
            self._require_available(quantity, snapshot.current_quantity)

            def work(session: Session) -> MutationResult:
                supply = self._locked_supply(session, supply_id)
                if supply.location != source:
                    raise FailedPreconditionError(
                        f"Supply is not at the specified source location. Current location: {supply.location.value}"
                    )
                self._require_available(quantity, supply.current_quantity)
                now = self._clock()
                if quantity == supply.current_quantity:
                    supply.location = destination
                supply.last_updated = now
                ledger_service.append(
                    session,
                    supply_id=supply.id, supply_name=supply.name,
                    transaction_type=TransactionType.TRANSFER,
                    quantity=quantity, previous_quantity=supply.current_quantity,
                    new_quantity=supply.current_quantity,
                    user_id=profile.id, user_name=profile.display_name, timestamp=now,
                    source=source, destination=destination,
                    notes=notes or f"Transferred from {source.value} to {destination.value}",
                )
                session.flush()
                return MutationResult(
                    supply.id, supply.current_quantity, supply.status, now,
                    extra={
                        "quantity": quantity,
                        "source_location": source.value,
                        "destination_location": destination.value,
                        "new_location": supply.location.value,
                    },
                )

            result = self._db.run_in_transaction(work, self._retry)
            attempt.details["new_location"] = result.extra["new_location"]
            return result

    def process_expired_supplies(self, actor_id: Optional[str]) -> dict:
        """
        Zero out every expired supply that still has stock.

        Each supply is expired in its own transaction. A failure on one supply
        is logged and reported but does not stop the others.
        """
        details: Dict[str, Any] = {}
        with self._audited("process_expired_supplies", actor_id, details,
                           "An error occurred while processing expired supplies") as attempt:
            _require_actor(actor_id, "process expired supplies")
            profile = self._authorize(
                self._profile(actor_id), OperationClass.MANAGE,
                "You do not have permission to process expired supplies",
            )

            now = self._clock()
            with self._db.session_scope() as session:
                candidates = [
                    supply_id for (supply_id,) in session.query(Supply.id)
                    .filter(Supply.expiration_date.isnot(None))
                    .filter(Supply.expiration_date < now)
                    .filter(Supply.current_quantity > 0)
                    .all()
                ]

            processed: List[dict] = []
            failed: List[dict] = []
            for supply_id in candidates:
                try:
                    item = self._db.run_in_transaction(
                        self._expire_work(supply_id, profile, now), self._retry
                    )
                except Exception as e:
                    logger.error(f"Failed to expire supply {supply_id}: {e}", exc_info=True)
                    failed.append({"id": supply_id, "error": str(e) or type(e).__name__})
                    continue
                if item is not None:
                    processed.append(item)

            attempt.details.update(
                processed_count=len(processed), details=processed, failed=failed,
            )
            if processed:
                message = f"Processed {len(processed)} expired supplies"
            else:
                message = "No expired supplies found"
            logger.info(f"{message} ({len(failed)} failed)")
            return {
                "success": True,
                "message": message,
                "expired_count": len(processed),
                "processed_supplies": processed,
                "failed_supplies": failed,
                "timestamp": now.isoformat(),
            }

    def _expire_work(self, supply_id: str, profile: ActorProfile, now: datetime) -> Callable[[Session], Optional[dict]]:
        def work(session: Session) -> Optional[dict]:
            supply = session.get(Supply, supply_id, populate_existing=True)
            if supply is None or supply.current_quantity <= 0:
                return None
            expires = ensure_utc(supply.expiration_date)
            if expires is None or expires >= now:
                return None
            previous = supply.current_quantity
            supply.current_quantity = 0
            if supply.status != SupplyStatus.DISCONTINUED:
                supply.status = SupplyStatus.CRITICAL_STOCK
            supply.last_updated = now
            ledger_service.append(
                session,
                supply_id=supply.id, supply_name=supply.name,
                transaction_type=TransactionType.EXPIRE,
                quantity=previous, previous_quantity=previous, new_quantity=0,
                user_id=profile.id, user_name=profile.display_name, timestamp=now,
                notes=f"Automatically processed expired supply. Expiration date: {expires.date().isoformat()}",
            )
            session.flush()
            return {
                "id": supply.id,
                "name": supply.name,
                "quantity": previous,
                "expiration_date": expires.date().isoformat(),
            }

        return work

    # ------------------------------------------------------------------
    # Catalogue management
    # ------------------------------------------------------------------

    def create_supply(self, actor_id: Optional[str], data: Dict[str, Any]) -> dict:
        """Add a supply. A positive starting quantity is recorded as an initial restock."""
        details = {k: v for k, v in data.items()}
        with self._audited("create_supply", actor_id, details,
                           "An internal error occurred while creating the supply") as attempt:
            _require_actor(actor_id, "add supplies")
            name = _require_text(data.get("name"), "name")
            quantity = _require_non_negative_int(data.get("current_quantity", 0), "current_quantity")
            minimum = _require_non_negative_int(data.get("minimum_quantity", 0), "minimum_quantity")
            critical = _require_non_negative_int(data.get("critical_quantity", 0), "critical_quantity")
            try:
                validate_thresholds(minimum, critical)
            except ValueError as e:
                raise InvalidArgumentError(str(e))
            try:
                expiration = parse_timestamp(data.get("expiration_date"))
            except ValueError:
                raise InvalidArgumentError(f"Invalid expiration_date {data.get('expiration_date')!r}")
            requested_status = _coerce_enum(SupplyStatus, data.get("status"), "status")

            profile = self._authorize(
                self._profile(actor_id), OperationClass.MANAGE,
                "You do not have permission to add supplies",
            )

            def work(session: Session) -> dict:
                now = self._clock()
                status = derive(quantity, minimum, critical)
                if requested_status is not None and is_administrative(requested_status):
                    status = requested_status
                supply = Supply(
                    name=name,
                    description=data.get("description") or "",
                    category=_coerce_enum(SupplyCategory, data.get("category"), "category") or SupplyCategory.OTHER,
                    manufacturer=data.get("manufacturer"),
                    model_number=data.get("model_number"),
                    lot_number=data.get("lot_number"),
                    unit=_coerce_enum(SupplyUnit, data.get("unit"), "unit") or SupplyUnit.EACH,
                    unit_price=_coerce_price(data.get("unit_price")),
                    location=(
                        _coerce_enum(SupplyLocation, data.get("location"), "location")
                        or SupplyLocation.CENTRAL_SUPPLY
                    ),
                    expiration_date=expiration,
                    current_quantity=quantity,
                    minimum_quantity=minimum,
                    critical_quantity=critical,
                    status=status,
                    is_controlled=bool(data.get("is_controlled", False)),
                    required_signature=bool(data.get("required_signature", False)),
                    notes=data.get("notes"),
                    tags=list(data.get("tags") or []),
                    last_updated=now,
                    last_restock_date=now if quantity > 0 else None,
                )
                session.add(supply)
                session.flush()
                if quantity > 0:
                    ledger_service.append(
                        session,
                        supply_id=supply.id, supply_name=supply.name,
                        transaction_type=TransactionType.RESTOCK,
                        quantity=quantity, previous_quantity=0, new_quantity=quantity,
                        user_id=profile.id, user_name=profile.display_name, timestamp=now,
                        lot_number=supply.lot_number, expiration_date=expiration,
                        notes="Initial inventory creation",
                    )
                    session.flush()
                return supply_to_dict(supply)

            created = self._db.run_in_transaction(work, self._retry)
            attempt.details["supply_id"] = created["id"]
            return created

    def update_supply(self, actor_id: Optional[str], supply_id: str, changes: Dict[str, Any],
                      operation: str = "update_supply") -> dict:
        """
        Edit catalogue fields and thresholds.

        current_quantity cannot be edited here (use adjust_inventory). status can
        only be set to on_order or discontinued; any other value clears the
        override and stores the derived status.
        """
        details = {"supply_id": supply_id, "changes": dict(changes)}
        with self._audited(operation, actor_id, details,
                           "An internal error occurred while updating the supply"):
            _require_actor(actor_id, "update supplies")
            _require_supply_id(supply_id)
            if not changes:
                raise InvalidArgumentError("No changes supplied")
            unknown = set(changes) - EDITABLE_FIELDS
            if unknown:
                raise InvalidArgumentError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

            values: Dict[str, Any] = {}
            for key, value in changes.items():
                if value is None and key in NON_NULLABLE_FIELDS:
                    raise InvalidArgumentError(f"Invalid arguments: {key} cannot be null")
                if key in ("minimum_quantity", "critical_quantity"):
                    values[key] = _require_non_negative_int(value, key)
                elif key == "name":
                    values[key] = _require_text(value, "name")
                elif key == "category":
                    values[key] = _coerce_enum(SupplyCategory, value, key)
                elif key == "unit":
                    values[key] = _coerce_enum(SupplyUnit, value, key)
                elif key == "location":
                    values[key] = _coerce_enum(SupplyLocation, value, key)
                elif key == "status":
                    values[key] = _coerce_enum(SupplyStatus, value, key)
                elif key == "unit_price":
                    values[key] = _coerce_price(value)
                elif key == "expiration_date":
                    try:
                        values[key] = parse_timestamp(value)
                    except ValueError:
                        raise InvalidArgumentError(f"Invalid expiration_date {value!r}")
                elif key == "tags":
                    values[key] = list(value or [])
                else:
                    values[key] = value

            self._authorize(
                self._profile(actor_id), OperationClass.MANAGE,
                "You do not have permission to update supplies",
            )
            self._snapshot(supply_id)

            def work(session: Session) -> dict:
                supply = self._locked_supply(session, supply_id)
                minimum = values.get("minimum_quantity", supply.minimum_quantity)
                critical = values.get("critical_quantity", supply.critical_quantity)
                try:
                    validate_thresholds(minimum, critical)
                except ValueError as e:
                    raise InvalidArgumentError(str(e))

                requested_status = values.get("status")
                for key, value in values.items():
                    if key != "status":
                        setattr(supply, key, value)

                if requested_status is not None and is_administrative(requested_status):
                    supply.status = requested_status
                elif requested_status is not None or not is_administrative(supply.status):
                    supply.status = derive(supply.current_quantity, minimum, critical)
                supply.last_updated = self._clock()
                session.flush()
                return supply_to_dict(supply)

            return self._db.run_in_transaction(work, self._retry)

    def discontinue_supply(self, actor_id: Optional[str], supply_id: str) -> dict:
        """Soft delete: status becomes discontinued, history stays."""
        note = f"Discontinued: {self._clock().isoformat()}"
        existing_notes = None
        if actor_id and supply_id:
            try:
                with self._db.session_scope() as session:
                    supply = session.get(Supply, supply_id)
                    existing_notes = supply.notes if supply else None
            except Exception as e:
                logger.warning(f"Could not read notes for supply {supply_id}: {e}")
        notes = f"{existing_notes}\n{note}" if existing_notes else note
        return self.update_supply(
            actor_id, supply_id, {"status": SupplyStatus.DISCONTINUED, "notes": notes},
            operation="discontinue_supply",
        )

    def delete_supply(self, actor_id: Optional[str], supply_id: str) -> dict:
        """Hard delete for administrative cleanup. Ledger history is kept."""
        details = {"supply_id": supply_id}
        with self._audited("delete_supply", actor_id, details,
                           "An internal error occurred while deleting the supply") as attempt:
            _require_actor(actor_id, "delete supplies")
            _require_supply_id(supply_id)
            self._authorize(
                self._profile(actor_id), OperationClass.MANAGE,
                "You do not have permission to delete supplies",
            )

            def work(session: Session) -> dict:
                supply = self._locked_supply(session, supply_id)
                snapshot = supply_to_dict(supply)
                session.delete(supply)
                session.flush()
                return snapshot

            deleted = self._db.run_in_transaction(work, self._retry)
            attempt.details["name"] = deleted["name"]
            return {"success": True, "supply_id": supply_id, "timestamp": self._clock().isoformat()}

    # ------------------------------------------------------------------
    # Reads (not audited)
    # ------------------------------------------------------------------

    def _require_read(self, actor_id: Optional[str]) -> ActorProfile:
        _require_actor(actor_id, "view supplies")
        return self._authorize(
            self._profile(actor_id), OperationClass.READ, "You do not have permission to view supplies"
        )

    def get_supply(self, actor_id: Optional[str], supply_id: str) -> dict:
        self._require_read(actor_id)
        with self._db.session_scope() as session:
            supply = session.get(Supply, supply_id)
            if supply is None:
                raise NotFoundError("Supply not found")
            return supply_to_dict(supply)

    def list_supplies(
        self,
        actor_id: Optional[str],
        category: Optional[Any] = None,
        status: Optional[Any] = None,
        location: Optional[Any] = None,
        search: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[dict]:
        self._require_read(actor_id)
        category = _coerce_enum(SupplyCategory, category, "category")
        status = _coerce_enum(SupplyStatus, status, "status")
        location = _coerce_enum(SupplyLocation, location, "location")
        with self._db.session_scope() as session:
            q = session.query(Supply)
            if category:
                q = q.filter(Supply.category == category)
            if status:
                q = q.filter(Supply.status == status)
            if location:
                q = q.filter(Supply.location == location)
            if search:
                pattern = f"%{search}%"
                q = q.filter(or_(Supply.name.ilike(pattern), Supply.description.ilike(pattern)))
            items = q.order_by(Supply.name).offset(offset).limit(limit).all()
            return [supply_to_dict(s) for s in items]

    def list_transactions(
        self,
        actor_id: Optional[str],
        supply_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        transaction_type: Optional[Any] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[dict]:
        self._require_read(actor_id)
        transaction_type = _coerce_enum(TransactionType, transaction_type, "transaction_type")
        with self._db.session_scope() as session:
            entries = ledger_service.list_entries(
                session, supply_id=supply_id, patient_id=patient_id,
                transaction_type=transaction_type, limit=limit, offset=offset,
            )
            return [ledger_service.to_dict(e) for e in entries]

    def get_low_stock_supplies(self, actor_id: Optional[str], include_details: bool = True) -> dict:
        """Supplies at low or critical stock, for dashboards and alerting."""
        self._require_read(actor_id)
        with self._db.session_scope() as session:
            rows = (
                session.query(Supply)
                .filter(Supply.status.in_([SupplyStatus.LOW_STOCK, SupplyStatus.CRITICAL_STOCK]))
                .order_by(Supply.current_quantity.asc())
                .all()
            )
            if include_details:
                supplies = [supply_to_dict(s) for s in rows]
            else:
                supplies = [
                    {
                        "id": s.id,
                        "name": s.name,
                        "status": s.status.value,
                        "current_quantity": s.current_quantity,
                        "minimum_quantity": s.minimum_quantity,
                        "critical_quantity": s.critical_quantity,
                        "unit": s.unit.value,
                        "category": s.category.value,
                        "location": s.location.value,
                    }
                    for s in rows
                ]

        low = sum(1 for s in supplies if s["status"] == SupplyStatus.LOW_STOCK.value)
        critical = sum(1 for s in supplies if s["status"] == SupplyStatus.CRITICAL_STOCK.value)
        if supplies:
            message = f"Found {len(supplies)} supplies with low stock"
        else:
            message = "No supplies with low stock found"
        return {
            "success": True,
            "message": message,
            "low_stock_count": low,
            "critical_stock_count": critical,
            "supplies": supplies,
        }
