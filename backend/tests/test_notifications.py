import httpx
import pytest

from distro.models import Order
from distro.services import order_service
from distro.services import notification_service
from distro.services.order_service import OrderRequest


WEBHOOK = "http://hooks.distro.test/notify"


@pytest.fixture
def webhook(app, monkeypatch):
    """Route notification POSTs to a recorder instead of the network."""
    monkeypatch.setitem(app.config, "NOTIFY_WEBHOOK_URL", WEBHOOK)
    sent = []

    def fake_post(url, json=None, timeout=None):
        sent.append({"url": url, "json": json})
        return httpx.Response(200, request=httpx.Request("POST", url))

    monkeypatch.setattr(notification_service.httpx, "post", fake_post)
    return sent


def _create(actor, customer, products):
    return order_service.create_order(
        actor, OrderRequest(customer_id=customer.id, quantities={products["cola"].id: 2}),
    )


def test_new_order_posts_to_webhook(db_session, webhook, sales_rep, customer, products):
    order = _create(sales_rep, customer, products)

    assert len(webhook) == 1
    message = webhook[0]["json"]
    assert webhook[0]["url"] == WEBHOOK
    assert message["to"] == "sales@distro.test"
    assert message["subject"] == f"New Order Received - {order.order_number}"
    assert message["order"]["total_cents"] == 300


def test_preference_off_sends_nothing(db_session, webhook, sales_rep, customer, products):
    sales_rep.notify_new_orders = False
    db_session.commit()

    _create(sales_rep, customer, products)

    assert webhook == []


def test_delivery_failure_never_fails_the_order(db_session, app, monkeypatch, sales_rep, customer, products):
    monkeypatch.setitem(app.config, "NOTIFY_WEBHOOK_URL", WEBHOOK)

    def failing_post(url, json=None, timeout=None):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(notification_service.httpx, "post", failing_post)

    order = _create(sales_rep, customer, products)

    assert order.id is not None
    assert db_session.query(Order).count() == 1


def test_http_error_status_is_reported(db_session, app, monkeypatch, sales_rep, customer, products):
    monkeypatch.setitem(app.config, "NOTIFY_WEBHOOK_URL", WEBHOOK)
    monkeypatch.setattr(
        notification_service.httpx,
        "post",
        lambda url, json=None, timeout=None: httpx.Response(502, request=httpx.Request("POST", url)),
    )
    order = _create(sales_rep, customer, products)

    assert notification_service.notify_new_order(order, sales_rep) is False


def test_without_webhook_the_message_is_logged(db_session, sales_rep, customer, products):
    order = _create(sales_rep, customer, products)
    assert notification_service.notify_new_order(order, sales_rep) is True
