"""
Tests for the order record store.

Runs against a real SQLite database through aiosqlite so JSON document
round-trips, unique constraints and ordering are exercised for real.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from storefront.database.models import Order
from storefront.schemas.orders import PaymentInfo, TrackingInfo
from storefront.services.orders.enums import (
    OrderStatus,
    PaymentProvider,
    PaymentStatus,
)
from storefront.services.orders.repository import (
    CorruptOrderError,
    DuplicateOrderNumberError,
    OrderNotFoundError,
    OrderRepository,
)


class TestCreate:
    """Test inserting orders."""

    async def test_round_trip(self, session, build_order) -> None:
        record = build_order(
            payment=PaymentInfo(
                status=PaymentStatus.PAID,
                provider=PaymentProvider.PAYSTACK,
                reference="bwitty_42",
                amount=Decimal("17500"),
            ),
            status=OrderStatus.PROCESSING,
        )
        repository = OrderRepository(session)

        await repository.create(record)
        await session.commit()
        loaded = await repository.get_by_id(record.id)

        assert loaded == record
        assert loaded.created_at.tzinfo is not None

    async def test_duplicate_order_number(self, session, build_order) -> None:
        repository = OrderRepository(session)
        await repository.create(build_order(order_no="BW-20240611-DUP001"))
        await session.commit()

        with pytest.raises(DuplicateOrderNumberError):
            await repository.create(build_order(order_no="BW-20240611-DUP001"))

    async def test_order_number_exists(self, session, build_order) -> None:
        repository = OrderRepository(session)
        await repository.create(build_order(order_no="BW-20240611-EXISTS"))

        assert await repository.order_number_exists("BW-20240611-EXISTS")
        assert not await repository.order_number_exists("BW-20240611-NOPE00")


class TestLookups:
    """Test loading orders by id and payment reference."""

    async def test_get_by_id_missing(self, session) -> None:
        assert await OrderRepository(session).get_by_id(uuid.uuid4()) is None

    async def test_get_by_payment_reference(self, session, build_order) -> None:
        record = build_order(
            payment=PaymentInfo(
                status=PaymentStatus.PENDING,
                provider=PaymentProvider.PAYSTACK,
                reference="bwitty_999",
            )
        )
        other = build_order(order_no="BW-20240611-OTHER1")
        repository = OrderRepository(session)
        await repository.create(record)
        await repository.create(other)

        found = await repository.get_by_payment_reference("bwitty_999", for_update=True)

        assert found.id == record.id
        assert await repository.get_by_payment_reference("bwitty_000") is None

    async def test_cod_orders_have_no_reference(self, session, build_order) -> None:
        repository = OrderRepository(session)
        await repository.create(
            build_order(
                payment=PaymentInfo(status=PaymentStatus.COD, provider=PaymentProvider.COD),
                status=OrderStatus.PROCESSING,
            )
        )

        assert await repository.get_by_payment_reference("") is None


class TestListOrders:
    """Test newest-first listings."""

    async def test_newest_first_and_filtered(self, session, build_order) -> None:
        repository = OrderRepository(session)
        base = build_order().created_at
        oldest = build_order(order_no="BW-20240611-AAAAA1", created_at=base)
        middle = build_order(
            order_no="BW-20240611-AAAAA2", created_at=base + timedelta(hours=1)
        )
        newest = build_order(
            order_no="BW-20240611-AAAAA3", created_at=base + timedelta(hours=2)
        )
        foreign = build_order(
            order_no="BW-20240611-AAAAA4",
            user_id="user-456",
            created_at=base + timedelta(hours=3),
        )
        for record in (middle, oldest, foreign, newest):
            await repository.create(record)

        mine = await repository.list_orders(user_id="user-123")
        everything = await repository.list_orders()

        assert [o.id for o in mine] == [newest.id, middle.id, oldest.id]
        assert [o.id for o in everything] == [
            foreign.id,
            newest.id,
            middle.id,
            oldest.id,
        ]


class TestSave:
    """Test writing mutable state back."""

    async def test_save_updates_mutable_columns(self, session, build_order) -> None:
        record = build_order(status=OrderStatus.SHIPPED)
        repository = OrderRepository(session)
        await repository.create(record)

        changed = record.model_copy(
            update={
                "tracking": TrackingInfo(carrier="DHL", tracking_number="DHL1"),
                "updated_at": record.updated_at + timedelta(minutes=1),
            }
        )
        saved = await repository.save(changed)
        await session.commit()

        assert saved.tracking.carrier == "DHL"
        assert (await repository.get_by_id(record.id)).tracking.tracking_number == "DHL1"

    async def test_save_does_not_rewrite_snapshots(self, session, build_order) -> None:
        record = build_order()
        repository = OrderRepository(session)
        await repository.create(record)

        tampered = record.model_copy(update={"customer_name": "Someone Else"})
        saved = await repository.save(tampered)

        assert saved.customer_name == "Ada Obi"

    async def test_save_missing_order(self, session, build_order) -> None:
        with pytest.raises(OrderNotFoundError):
            await OrderRepository(session).save(build_order())


class TestCorruptRows:
    """Rows that no longer validate surface as errors, not bad data."""

    async def test_invalid_totals_detected(self, session, build_order) -> None:
        record = build_order()
        repository = OrderRepository(session)
        await repository.create(record)
        await session.commit()

        await session.execute(
            update(Order)
            .where(Order.id == record.id)
            .values(
                totals={
                    "subtotal": 1,
                    "shipping": 1,
                    "fees": 0,
                    "grand_total": 5,
                    "currency": "NGN",
                }
            )
        )
        await session.commit()
        session.expire_all()

        with pytest.raises(CorruptOrderError):
            await repository.get_by_id(record.id)

    async def test_empty_audit_log_detected(self, session, build_order) -> None:
        record = build_order()
        repository = OrderRepository(session)
        await repository.create(record)
        await session.commit()

        await session.execute(
            update(Order).where(Order.id == record.id).values(audit_log=[])
        )
        await session.commit()
        session.expire_all()

        with pytest.raises(CorruptOrderError):
            await repository.get_by_id(record.id)
