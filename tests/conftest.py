"""Shared fixtures: in-memory SQLite ledger store, entity factories, fixed clock."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("CELERY_BROKER_URL", "redis://localhost:6379/1")
os.environ.setdefault("CELERY_RESULT_BACKEND", "redis://localhost:6379/2")

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.models.notification import Notification  # noqa: F401
from app.models.order import Order
from app.models.package import Package
from app.models.payment import Payment
from app.models.points_log import PointsLogEntry  # noqa: F401
from app.models.user import User
from app.models.voucher import UserVoucher, Voucher  # noqa: F401
from app.schemas.users import Caller
from app.utils.time import utcnow


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def now():
    return utcnow().replace(microsecond=0)


@pytest.fixture
def clock(now):
    return lambda: now


@pytest.fixture
def make_user(db):
    def _make(role="customer", full_name="Test User", **kwargs):
        user = User(
            id=kwargs.pop("id", str(uuid4())),
            email=kwargs.pop("email", f"{uuid4().hex[:10]}@example.com"),
            full_name=full_name,
            role=role,
            **kwargs,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def admin(make_user):
    user = make_user(role="admin", full_name="Admin")
    return Caller(id=user.id, role="admin", full_name="Admin")


@pytest.fixture
def make_order(db, now):
    def _make(user, status="pending", price="100.00", age=timedelta(hours=1), **kwargs):
        created = kwargs.pop("created_at", now - age)
        order = Order(
            user_id=user.id,
            status=status,
            price=Decimal(price),
            created_at=created,
            updated_at=kwargs.pop("updated_at", created),
            **kwargs,
        )
        db.add(order)
        db.commit()
        return order

    return _make


@pytest.fixture
def make_package(db):
    def _make(times=10, validity_days=30, price="100.00", active=True):
        package = Package(
            name=f"{times}x Restring Pack",
            times=times,
            validity_days=validity_days,
            price=Decimal(price),
            active=active,
        )
        db.add(package)
        db.commit()
        return package

    return _make


@pytest.fixture
def make_payment(db):
    def _make(user, order=None, package=None, amount="100.00", status="pending", provider="tng"):
        payment = Payment(
            user_id=user.id,
            order_id=order.id if order else None,
            package_id=package.id if package else None,
            amount=Decimal(amount),
            status=status,
            provider=provider,
            meta={},
        )
        db.add(payment)
        db.commit()
        return payment

    return _make


@pytest.fixture
def make_voucher(db, now):
    def _make(code=None, points_cost=0, max_uses=None, active=True, **kwargs):
        voucher = Voucher(
            code=(code or f"V{uuid4().hex[:8]}").upper(),
            name=kwargs.pop("name", "RM5 off restring"),
            type="fixed_amount",
            value=Decimal("5.00"),
            min_purchase=Decimal("0.00"),
            valid_from=kwargs.pop("valid_from", now - timedelta(days=1)),
            valid_until=kwargs.pop("valid_until", now + timedelta(days=30)),
            max_uses=max_uses,
            used_count=0,
            points_cost=points_cost,
            active=active,
            **kwargs,
        )
        db.add(voucher)
        db.commit()
        return voucher

    return _make


@pytest.fixture
def commit_elsewhere(db):
    """Run a statement in a separate session and commit it, as a concurrent request would."""

    def _commit(statement):
        other = sessionmaker(bind=db.get_bind())()
        try:
            other.execute(statement)
            other.commit()
        finally:
            other.close()

    return _commit
