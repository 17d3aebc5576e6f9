"""
Procurement: supplier choice, order sizing, order lifecycle and supplier
scoring.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from pharmacy_kernel.exceptions import (
    InvalidOrderTransitionError,
    InvalidQuantityError,
    InvalidRatingError,
    MedicineNotFoundError,
    NoEligibleSupplierError,
    PurchaseOrderNotFoundError,
    SupplierNotFoundError,
)
from pharmacy_kernel.models.purchase_order import (
    PredictedDemand,
    PurchaseOrder,
    PurchaseOrderStatus,
    is_valid_order_transition,
)
from pharmacy_kernel.models.supplier import Supplier, SupplierRating


def _set_scores(open_session, supplier_id, rating, on_time):
    with open_session() as session:
        supplier = session.get(Supplier, supplier_id)
        supplier.rating = rating
        supplier.on_time_delivery_rate = on_time
        session.commit()


class TestSupplierSelection:
    def test_highest_rated_supplier_wins(self, make_medicine, make_supplier, engine, actor, open_session):
        medicine_id = make_medicine()
        low = make_supplier("Low Pharma")
        high = make_supplier("High Pharma")
        make_supplier("Aardvark Meds")
        _set_scores(open_session, low, Decimal("3.10"), Decimal("99.00"))
        _set_scores(open_session, high, Decimal("4.80"), Decimal("50.00"))

        order_id = engine.auto_order(medicine_id, actor)

        with open_session() as session:
            assert session.get(PurchaseOrder, order_id).supplier_id == high

    def test_on_time_rate_breaks_rating_tie(self, make_medicine, make_supplier, engine, actor, open_session):
        medicine_id = make_medicine()
        slow = make_supplier("Alpha")
        punctual = make_supplier("Zeta")
        _set_scores(open_session, slow, Decimal("4.00"), Decimal("70.00"))
        _set_scores(open_session, punctual, Decimal("4.00"), Decimal("95.00"))

        order_id = engine.auto_order(medicine_id, actor)

        with open_session() as session:
            assert session.get(PurchaseOrder, order_id).supplier_id == punctual

    def test_inactive_suppliers_are_skipped(self, make_medicine, make_supplier, engine, actor, open_session):
        medicine_id = make_medicine()
        best = make_supplier("Best")
        other = make_supplier("Other")
        _set_scores(open_session, best, Decimal("5.00"), Decimal("100.00"))
        engine.deactivate_supplier(best, actor)

        order_id = engine.auto_order(medicine_id, actor)

        with open_session() as session:
            assert session.get(PurchaseOrder, order_id).supplier_id == other

    def test_no_active_supplier(self, make_medicine, engine, actor):
        with pytest.raises(NoEligibleSupplierError):
            engine.auto_order(make_medicine(), actor)

    def test_unknown_medicine(self, make_supplier, engine, actor):
        make_supplier()
        with pytest.raises(MedicineNotFoundError):
            engine.auto_order(uuid4(), actor)


class TestAutoOrder:
    def test_order_fields(self, make_medicine, make_supplier, engine, actor, clock, open_session):
        medicine_id = make_medicine()
        make_supplier()

        order_id = engine.auto_order(medicine_id, actor)

        with open_session() as session:
            order = session.get(PurchaseOrder, order_id)
            assert order.order_number == f"PO-20240601-{medicine_id}"
            assert order.quantity_ordered == 100
            assert order.order_date == clock.today()
            assert order.expected_delivery_date == clock.today() + timedelta(days=7)
            assert order.status == "pending"
            assert order.auto_generated
            assert order.created_by == actor.actor_id

    def test_same_day_auto_order_is_idempotent(self, make_medicine, make_supplier, engine, actor, open_session):
        medicine_id = make_medicine()
        make_supplier()

        first = engine.auto_order(medicine_id, actor)
        second = engine.auto_order(medicine_id, actor)

        assert first == second
        with open_session() as session:
            assert session.execute(select(func.count(PurchaseOrder.id))).scalar_one() == 1

    def test_next_day_gets_a_new_order(self, make_medicine, make_supplier, engine, actor, clock):
        medicine_id = make_medicine()
        make_supplier()

        first = engine.auto_order(medicine_id, actor)
        clock.advance_days(1)
        second = engine.auto_order(medicine_id, actor)

        assert first != second

    def test_predicted_demand_sizes_the_order(self, make_medicine, make_supplier, engine, actor, clock, open_session):
        medicine_id = make_medicine()
        make_supplier()
        with open_session() as session:
            session.add_all([
                PredictedDemand(
                    medicine_id=medicine_id,
                    predicted_date=clock.today() - timedelta(days=1),
                    predicted_quantity=999,
                    created_at=clock.now() + timedelta(hours=1),
                ),
                PredictedDemand(
                    medicine_id=medicine_id,
                    predicted_date=clock.today() + timedelta(days=10),
                    predicted_quantity=240,
                    created_at=clock.now(),
                ),
                PredictedDemand(
                    medicine_id=medicine_id,
                    predicted_date=clock.today() + timedelta(days=3),
                    predicted_quantity=180,
                    created_at=clock.now(),
                ),
                PredictedDemand(
                    medicine_id=medicine_id,
                    predicted_date=clock.today() + timedelta(days=2),
                    predicted_quantity=60,
                    created_at=clock.now() - timedelta(days=5),
                ),
            ])
            session.commit()

        order_id = engine.auto_order(medicine_id, actor)

        with open_session() as session:
            assert session.get(PurchaseOrder, order_id).quantity_ordered == 180


class TestManualOrders:
    def test_create_order(self, make_medicine, make_supplier, engine, actor, clock, open_session):
        medicine_id = make_medicine()
        supplier_id = make_supplier()

        order_id = engine.create_order(
            medicine_id, supplier_id, 500, actor,
            expected_price=Decimal("1.25"),
            expected_delivery_date=clock.today() + timedelta(days=3),
        )

        with open_session() as session:
            order = session.get(PurchaseOrder, order_id)
            assert order.order_number.startswith("PO-20240601-M-")
            assert order.quantity_ordered == 500
            assert Decimal(order.expected_price) == Decimal("1.25")
            assert order.expected_delivery_date == clock.today() + timedelta(days=3)
            assert not order.auto_generated

    def test_manual_orders_do_not_collide(self, make_medicine, make_supplier, engine, actor):
        medicine_id = make_medicine()
        supplier_id = make_supplier()

        assert engine.create_order(medicine_id, supplier_id, 1, actor) != engine.create_order(
            medicine_id, supplier_id, 1, actor
        )

    def test_bad_quantity(self, make_medicine, make_supplier, engine, actor):
        with pytest.raises(InvalidQuantityError):
            engine.create_order(make_medicine(), make_supplier(), 0, actor)

    def test_unknown_supplier(self, make_medicine, engine, actor):
        with pytest.raises(SupplierNotFoundError):
            engine.create_order(make_medicine(), uuid4(), 5, actor)


class TestOrderTransitions:
    @pytest.mark.parametrize(
        "current, target, allowed",
        [
            ("pending", "approved", True),
            ("pending", "shipped", True),
            ("pending", "delivered", True),
            ("shipped", "approved", False),
            ("approved", "approved", False),
            ("shipped", "cancelled", True),
            ("delivered", "cancelled", False),
            ("cancelled", "pending", False),
        ],
    )
    def test_transition_table(self, current, target, allowed):
        assert is_valid_order_transition(PurchaseOrderStatus(current), PurchaseOrderStatus(target)) is allowed

    def test_backwards_transition_rejected(self, make_medicine, make_supplier, engine, actor, open_session):
        order_id = engine.create_order(make_medicine(), make_supplier(), 10, actor)
        engine.transition_order(order_id, "shipped", actor)

        with pytest.raises(InvalidOrderTransitionError):
            engine.transition_order(order_id, "approved", actor)

        with open_session() as session:
            assert session.get(PurchaseOrder, order_id).status == "shipped"

    def test_delivery_stamps_date(self, make_medicine, make_supplier, engine, actor, clock, open_session):
        order_id = engine.create_order(make_medicine(), make_supplier(), 10, actor)

        engine.transition_order(order_id, "delivered", actor)

        with open_session() as session:
            assert session.get(PurchaseOrder, order_id).actual_delivery_date == clock.today()

    def test_on_time_delivery_rate(self, make_medicine, make_supplier, engine, actor, clock, open_session):
        medicine_id = make_medicine()
        supplier_id = make_supplier()
        expected = clock.today() + timedelta(days=7)
        on_time = engine.create_order(medicine_id, supplier_id, 10, actor, expected_delivery_date=expected)
        late = engine.create_order(medicine_id, supplier_id, 10, actor, expected_delivery_date=expected)
        engine.create_order(medicine_id, supplier_id, 10, actor, expected_delivery_date=expected)

        engine.transition_order(on_time, "delivered", actor, actual_delivery_date=expected)
        engine.transition_order(late, "delivered", actor, actual_delivery_date=expected + timedelta(days=2))

        with open_session() as session:
            rate = session.get(Supplier, supplier_id).on_time_delivery_rate
            assert Decimal(rate) == Decimal("50.00")

    def test_unknown_order(self, engine, actor):
        with pytest.raises(PurchaseOrderNotFoundError):
            engine.transition_order(uuid4(), "approved", actor)


class TestSupplierRating:
    def test_rating_is_mean_of_overall_scores(self, make_supplier, engine, actor, open_session):
        supplier_id = make_supplier()

        first = engine.rate_supplier(supplier_id, None, 5, 4, 4, "Good", actor)
        engine.rate_supplier(supplier_id, None, 3, 3, 3, None, actor)

        with open_session() as session:
            assert Decimal(session.get(SupplierRating, first).overall_rating) == Decimal("4.33")
            supplier = session.get(Supplier, supplier_id)
            assert Decimal(supplier.rating) == Decimal("3.67")
            assert supplier.total_orders == 2

    def test_rating_linked_to_order(self, make_medicine, make_supplier, engine, actor, open_session):
        supplier_id = make_supplier()
        order_id = engine.create_order(make_medicine(), supplier_id, 10, actor)

        rating_id = engine.rate_supplier(supplier_id, order_id, 4, 4, 4, None, actor)

        with open_session() as session:
            assert session.get(SupplierRating, rating_id).order_id == order_id

    @pytest.mark.parametrize("score", [0, 6, True, 3.5])
    def test_invalid_scores(self, make_supplier, engine, actor, score):
        supplier_id = make_supplier()

        with pytest.raises(InvalidRatingError) as exc_info:
            engine.rate_supplier(supplier_id, None, 4, score, 4, None, actor)
        assert exc_info.value.field == "delivery"

    def test_unknown_supplier(self, engine, actor):
        with pytest.raises(SupplierNotFoundError):
            engine.rate_supplier(uuid4(), None, 4, 4, 4, None, actor)

    def test_unknown_order(self, make_supplier, engine, actor):
        with pytest.raises(PurchaseOrderNotFoundError):
            engine.rate_supplier(make_supplier(), uuid4(), 4, 4, 4, None, actor)
