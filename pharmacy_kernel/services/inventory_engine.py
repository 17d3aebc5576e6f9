"""
InventoryEngine -- transaction boundary for every kernel entry point.

Responsibility:
    Opens one session per call, wires the services onto it, runs the
    operation, and commits.  On a transient failure the whole operation is
    rolled back and re-run, up to ``config.max_transaction_retries`` times.

Architecture position:
    Kernel > Services -- the outermost kernel layer.  Callers (API handlers,
    batch jobs, tests) hold one InventoryEngine per process and call it from
    any thread; each call uses its own session.

Invariants enforced:
    - One entry point is one transaction.  Services flush; only this class
      commits or rolls back.
    - Domain errors (insufficient stock, prescription required, ...) are
      never retried; they surface after rollback with state unmodified.
    - Transient errors are retried: ConcurrencyConflictError, ORM
      StaleDataError, PostgreSQL serialization failure (40001) or deadlock
      (40P01), SQLite "database is locked".  When retries are exhausted the
      caller receives ConcurrencyConflictError.

Usage:
    engine = InventoryEngine(get_session_factory(), clock=SystemClock())
    batch_id = engine.receive_batch(spec, actor)
    result = engine.record_sale(batch_id, 5, Decimal("3.20"), None, None, "cash", actor)
"""

import time
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from pharmacy_kernel.config import EngineConfig, ExpiryBands
from pharmacy_kernel.domain.actor import ActorContext
from pharmacy_kernel.domain.clock import Clock, SystemClock
from pharmacy_kernel.domain.dtos import AlertResult, BatchSpec, BuyerInfo, LedgerEntry, SaleResult
from pharmacy_kernel.exceptions import ConcurrencyConflictError
from pharmacy_kernel.logging_config import LogContext, get_logger
from pharmacy_kernel.models.movement import MovementType
from pharmacy_kernel.services.alert_engine import AlertEngine
from pharmacy_kernel.services.audit_recorder import AuditRecorder
from pharmacy_kernel.services.catalog_service import CatalogService
from pharmacy_kernel.services.procurement_engine import ProcurementEngine
from pharmacy_kernel.services.recall_workflow import RecallWorkflow
from pharmacy_kernel.services.sale_processor import SaleProcessor
from pharmacy_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.inventory_engine")

T = TypeVar("T")

_TRANSIENT_PG_CODES = frozenset({"40001", "40P01"})

# Sales and disposals are written by their own workflows, which reference the cause
_MANUAL_MOVEMENT_TYPES = frozenset({MovementType.ADJUSTMENT.value, MovementType.RETURN.value})


def is_transient_db_error(exc: BaseException) -> bool:
    """True for database errors that a fresh transaction may not hit again."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    if getattr(orig, "pgcode", None) in _TRANSIENT_PG_CODES:
        return True
    return "database is locked" in str(orig).lower()


@dataclass
class ServiceSet:
    """The kernel services bound to one session."""

    session: Session
    audit: AuditRecorder
    alerts: AlertEngine
    ledger: StockLedger
    procurement: ProcurementEngine
    sales: SaleProcessor
    recalls: RecallWorkflow
    catalog: CatalogService

    @classmethod
    def build(cls, session: Session, clock: Clock, config: EngineConfig) -> "ServiceSet":
        audit = AuditRecorder(session, clock, config)
        alerts = AlertEngine(session, clock, config, audit=audit)
        ledger = StockLedger(session, clock, config, audit=audit, alerts=alerts)
        procurement = ProcurementEngine(session, clock, config, audit=audit)
        return cls(
            session=session,
            audit=audit,
            alerts=alerts,
            ledger=ledger,
            procurement=procurement,
            sales=SaleProcessor(
                session, clock, config,
                ledger=ledger, alerts=alerts, procurement=procurement, audit=audit,
            ),
            recalls=RecallWorkflow(session, clock, config, ledger=ledger, alerts=alerts, audit=audit),
            catalog=CatalogService(session, clock, config, audit=audit),
        )


class InventoryEngine:
    """
    Entry points of the inventory kernel, each in its own transaction.

    Contract:
        Thread-safe as long as ``session_factory`` is: no session is shared
        between calls.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        config: EngineConfig | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or EngineConfig.with_defaults()

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def config(self) -> EngineConfig:
        return self._config

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------

    def run(
        self,
        operation: str,
        actor: ActorContext | None,
        work: Callable[[ServiceSet], T],
        batch_id: UUID | None = None,
    ) -> T:
        """
        Run ``work`` in a fresh transaction, retrying transient failures.

        Raises:
            ConcurrencyConflictError: Retries exhausted.
            PharmacyKernelError: Any domain error from ``work`` (not retried).
        """
        max_attempts = self._config.max_transaction_retries
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor.actor_id) if actor else None,
            operation=operation,
            batch_id=str(batch_id) if batch_id else None,
        ):
            for attempt in range(1, max_attempts + 1):
                t0 = time.monotonic()
                session = self._session_factory()
                try:
                    result = work(ServiceSet.build(session, self._clock, self._config))
                    session.commit()
                    logger.info(
                        "transaction_committed",
                        extra={
                            "attempt": attempt,
                            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                        },
                    )
                    return result
                except (ConcurrencyConflictError, StaleDataError, DBAPIError) as exc:
                    session.rollback()
                    if isinstance(exc, DBAPIError) and not is_transient_db_error(exc):
                        logger.error("transaction_failed", exc_info=True)
                        raise
                    if attempt >= max_attempts:
                        logger.error(
                            "transaction_retries_exhausted",
                            extra={"attempts": attempt, "error_type": type(exc).__name__},
                        )
                        entity_type = getattr(exc, "entity_type", "transaction")
                        entity_id = getattr(exc, "entity_id", operation)
                        raise ConcurrencyConflictError(entity_type, entity_id, attempts=attempt) from exc
                    logger.warning(
                        "transaction_retry",
                        extra={"attempt": attempt, "error_type": type(exc).__name__},
                    )
                    time.sleep(self._config.retry_backoff_seconds * attempt)
                except Exception:
                    session.rollback()
                    logger.warning(
                        "transaction_rolled_back",
                        extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                        exc_info=True,
                    )
                    raise
                finally:
                    session.close()

    # ------------------------------------------------------------------
    # Stock ledger
    # ------------------------------------------------------------------

    def receive_batch(self, spec: BatchSpec, actor: ActorContext) -> UUID:
        return self.run("receive_batch", actor, lambda s: s.ledger.receive(spec, actor))

    def adjust_stock(
        self,
        batch_id: UUID,
        delta: int,
        reason: str,
        actor: ActorContext,
        movement_type: MovementType | str = MovementType.ADJUSTMENT,
    ) -> LedgerEntry:
        """
        Manual stock correction; re-evaluates stock-level alerts afterwards.

        Raises:
            ValueError: movement_type is not adjustment or return.
        """
        type_value = MovementType(movement_type).value
        if type_value not in _MANUAL_MOVEMENT_TYPES:
            raise ValueError(f"movement type '{type_value}' is not a manual correction")

        def work(s: ServiceSet) -> LedgerEntry:
            entry = s.ledger.adjust(batch_id, delta, reason, actor, movement_type=movement_type)
            batch = s.ledger.lock_batch(batch_id)
            s.alerts.evaluate_stock_levels(batch, batch.medicine)
            return entry

        return self.run("adjust_stock", actor, work, batch_id=batch_id)

    def expire_sweep(self, actor: ActorContext, as_of_date: date | None = None) -> int:
        as_of = as_of_date or self._clock.today()
        return self.run("expire_sweep", actor, lambda s: s.ledger.expire_sweep(as_of, actor))

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    def record_sale(
        self,
        batch_id: UUID,
        quantity: int,
        price: Decimal,
        prescription_id: UUID | None,
        buyer: BuyerInfo | None,
        payment_method: str,
        actor: ActorContext,
    ) -> SaleResult:
        return self.run(
            "record_sale",
            actor,
            lambda s: s.sales.record_sale(
                batch_id, quantity, price, prescription_id, buyer, payment_method, actor,
            ),
            batch_id=batch_id,
        )

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def raise_alert(
        self,
        batch_id: UUID,
        alert_type: str,
        message: str,
        severity: str,
        recall_id: UUID | None = None,
    ) -> AlertResult:
        return self.run(
            "raise_alert",
            None,
            lambda s: s.alerts.raise_alert(batch_id, alert_type, message, severity, recall_id),
            batch_id=batch_id,
        )

    def acknowledge_alert(
        self,
        alert_id: UUID,
        actor: ActorContext,
        action_taken: str | None = None,
    ) -> None:
        self.run("acknowledge_alert", actor, lambda s: s.alerts.acknowledge(alert_id, actor, action_taken))

    def scan_expiring(
        self,
        threshold_days: int,
        actor: ActorContext,
        bands: ExpiryBands | None = None,
    ) -> list[UUID]:
        return self.run("scan_expiring", actor, lambda s: s.alerts.scan_expiring(threshold_days, actor, bands))

    # ------------------------------------------------------------------
    # Recalls
    # ------------------------------------------------------------------

    def add_recall(
        self,
        batch_id: UUID,
        reason: str,
        recall_date: date,
        announced_by: str | None,
        severity: str,
        instructions: str | None,
        actor: ActorContext,
    ) -> UUID:
        return self.run(
            "add_recall",
            actor,
            lambda s: s.recalls.add_recall(
                batch_id, reason, recall_date, announced_by, severity, instructions, actor,
            ),
            batch_id=batch_id,
        )

    def update_recall_status(self, recall_id: UUID, status: str, actor: ActorContext) -> None:
        self.run("update_recall_status", actor, lambda s: s.recalls.update_recall_status(recall_id, status, actor))

    def record_returned_quantity(self, recall_id: UUID, quantity: int, actor: ActorContext) -> int:
        return self.run(
            "record_returned_quantity",
            actor,
            lambda s: s.recalls.record_returned_quantity(recall_id, quantity, actor),
        )

    # ------------------------------------------------------------------
    # Procurement
    # ------------------------------------------------------------------

    def auto_order(self, medicine_id: UUID, actor: ActorContext) -> UUID:
        return self.run("auto_order", actor, lambda s: s.procurement.auto_order(medicine_id, actor))

    def create_order(
        self,
        medicine_id: UUID,
        supplier_id: UUID,
        quantity: int,
        actor: ActorContext,
        expected_price: Decimal | None = None,
        expected_delivery_date: date | None = None,
    ) -> UUID:
        return self.run(
            "create_order",
            actor,
            lambda s: s.procurement.create_order(
                medicine_id, supplier_id, quantity, actor, expected_price, expected_delivery_date,
            ),
        )

    def transition_order(
        self,
        order_id: UUID,
        status: str,
        actor: ActorContext,
        actual_delivery_date: date | None = None,
    ) -> None:
        self.run(
            "transition_order",
            actor,
            lambda s: s.procurement.transition_order(order_id, status, actor, actual_delivery_date),
        )

    def rate_supplier(
        self,
        supplier_id: UUID,
        order_id: UUID | None,
        quality: int,
        delivery: int,
        communication: int,
        comments: str | None,
        actor: ActorContext,
    ) -> UUID:
        return self.run(
            "rate_supplier",
            actor,
            lambda s: s.procurement.rate_supplier(
                supplier_id, order_id, quality, delivery, communication, comments, actor,
            ),
        )

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def register_medicine(self, name: str, actor: ActorContext, **attributes: Any) -> UUID:
        return self.run("register_medicine", actor, lambda s: s.catalog.register_medicine(name, actor, **attributes))

    def deactivate_medicine(self, medicine_id: UUID, actor: ActorContext) -> None:
        self.run("deactivate_medicine", actor, lambda s: s.catalog.deactivate_medicine(medicine_id, actor))

    def delete_medicine(self, medicine_id: UUID, actor: ActorContext) -> None:
        self.run("delete_medicine", actor, lambda s: s.catalog.delete_medicine(medicine_id, actor))

    def add_interaction(
        self,
        medicine_a: UUID,
        medicine_b: UUID,
        interaction_type: str,
        description: str,
        actor: ActorContext,
    ) -> UUID:
        return self.run(
            "add_interaction",
            actor,
            lambda s: s.catalog.add_interaction(medicine_a, medicine_b, interaction_type, description, actor),
        )

    def register_supplier(self, supplier_name: str, actor: ActorContext, **attributes: Any) -> UUID:
        return self.run(
            "register_supplier",
            actor,
            lambda s: s.catalog.register_supplier(supplier_name, actor, **attributes),
        )

    def deactivate_supplier(self, supplier_id: UUID, actor: ActorContext) -> None:
        self.run("deactivate_supplier", actor, lambda s: s.catalog.deactivate_supplier(supplier_id, actor))

    def register_prescription(
        self,
        prescription_number: str,
        patient_name: str,
        doctor_name: str,
        issue_date: date,
        actor: ActorContext,
        **attributes: Any,
    ) -> UUID:
        return self.run(
            "register_prescription",
            actor,
            lambda s: s.catalog.register_prescription(
                prescription_number, patient_name, doctor_name, issue_date, actor, **attributes,
            ),
        )

    def update_prescription_status(self, prescription_id: UUID, status: str, actor: ActorContext) -> None:
        self.run(
            "update_prescription_status",
            actor,
            lambda s: s.catalog.update_prescription_status(prescription_id, status, actor),
        )

    def delete_batch(self, batch_id: UUID, actor: ActorContext) -> None:
        self.run("delete_batch", actor, lambda s: s.catalog.delete_batch(batch_id, actor), batch_id=batch_id)
