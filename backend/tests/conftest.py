from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool

from ticketgate import create_app
from ticketgate.container import EXTENSION_KEY
from ticketgate.extensions import db
from ticketgate.models import Event, EventRegistration, Invoice, User
from ticketgate.providers import Receipt, ReceiptNotFound


class StubProvider:
    def __init__(self, name):
        self.name = name
        self.receipts = {}
        self.calls = []

    def add(self, transaction_id, amount, *, sender="Abebe Kebede", date="2026-09-22 10:15:00", status="valid"):
        self.receipts[transaction_id] = Receipt(
            transaction_id=transaction_id,
            sender_name=sender,
            amount=Decimal(str(amount)),
            date=date,
            status=status,
            method=self.name,
        )

    def verify(self, transaction_id):
        self.calls.append(transaction_id)
        if transaction_id not in self.receipts:
            raise ReceiptNotFound(f"{self.name} transaction not found")
        return self.receipts[transaction_id]


class RecordingNotifier:
    def __init__(self, result=(True, "sent")):
        self.result = result
        self.sent = []

    def notify_ticket_issued(self, user, invoice, image, ticket_url):
        self.sent.append({"user_id": user.id if user else None, "invoice_id": invoice.invoice_id, "url": ticket_url, "image": image})
        return self.result


@pytest.fixture()
def providers():
    return {name: StubProvider(name) for name in ("telebirr", "cbe", "boa")}


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def app(providers, notifier):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_ENGINE_OPTIONS": {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}},
            "TICKET_SECRET_KEY": "test-ticket-secret",
            "QR_BASE_URL": "https://tickets.example.com/ticket/",
            "VERIFY_REQUEST_TIMEOUT": 5,
            "REGISTRATION_SWEEP_MINUTES": 0,
        },
        providers=providers,
        notifier=notifier,
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def services(app):
    return app.extensions[EXTENSION_KEY]


class Seed:
    """Small factory for rows the tests need."""

    def __init__(self):
        self._n = 0

    def user(self, name="Abebe", chat_id="5550001"):
        u = User(name=name, telegram_chat_id=chat_id)
        db.session.add(u)
        db.session.commit()
        return u

    def event(self, name="Trail Ride", starts_in=timedelta(days=7)):
        e = Event(name=name, location="Entoto Park", starts_at=datetime.utcnow() + starts_in, price=Decimal("500"))
        db.session.add(e)
        db.session.commit()
        return e

    def registration(self, user, event, status="payment_initiated"):
        r = EventRegistration(user_id=user.id, event_id=event.id, status=status)
        db.session.add(r)
        db.session.commit()
        return r

    def invoice(self, user, amount, *, event=None, event_name=None, created_at=None, status="pending", registration=None):
        self._n += 1
        inv = Invoice(
            invoice_id=f"INV-{self._n:04d}",
            user_id=user.id,
            event_id=event.id if event else None,
            registration_id=registration.id if registration else None,
            amount=Decimal(str(amount)),
            status=status,
            event_name=event_name or (event.name if event else None),
            event_place=event.location if event else None,
            event_time=event.starts_at if event else None,
            created_at=created_at or datetime.utcnow() + timedelta(seconds=self._n),
        )
        db.session.add(inv)
        db.session.commit()
        return inv


@pytest.fixture()
def seed(app):
    return Seed()
