"""
Tests for domain notifications and the broadcast service.

Test coverage:
- Notification payloads for tasks, customers and invoices
- Recipient selection (assignee, watchers, actor suppression, tenant)
- Broadcast service no-ops when the realtime layer is down
"""

from unittest.mock import MagicMock

import pytest
from pydantic import BaseModel

from skycrm_backend.websocket.broadcast import WebSocketBroadcast
from skycrm_backend.websocket.notifications import (
    NotificationService,
    invoice_paid_notification,
    new_customer_notification,
    new_task_notification,
    task_update_notification,
)


@pytest.fixture
def mock_hub():
    hub = MagicMock()
    hub.running = True
    return hub


@pytest.fixture
def service(mock_hub):
    return NotificationService(WebSocketBroadcast(mock_hub))


def pushed_users(mock_hub):
    return [call.args[0] for call in mock_hub.push_to_user.call_args_list]


class TestPayloads:
    """Tests for notification formatting."""

    def test_new_task(self):
        notification = new_task_notification({"title": "Call ACME", "assignedTo": "u2"})

        assert notification.model_dump() == {
            "type": "task",
            "title": "New Task Assigned",
            "message": "You have been assigned a new task: Call ACME",
            "data": {"title": "Call ACME", "assignedTo": "u2"},
        }

    def test_task_update(self):
        task = {"title": "Call ACME"}

        assert task_update_notification(task).title == "Task Updated"
        assert task_update_notification(task, watched=True).title == "Watched Task Updated"
        assert task_update_notification(task).message == 'Task "Call ACME" has been updated'

    def test_new_customer(self):
        notification = new_customer_notification({"companyName": "ACME"})

        assert notification.type == "customer"
        assert notification.title == "New Customer Added"
        assert notification.message == 'New customer "ACME" has been added'

    def test_invoice_paid(self):
        notification = invoice_paid_notification({"invoiceNumber": "INV-7"}, {"companyName": "ACME"})

        assert notification.type == "invoice"
        assert notification.title == "Invoice Paid"
        assert notification.message == "Invoice INV-7 from ACME has been paid"
        assert notification.data == {"invoiceNumber": "INV-7"}

    def test_attribute_entities(self):
        """Test that model objects with snake_case fields are accepted."""

        class Customer(BaseModel):
            company_name: str

        notification = new_customer_notification(Customer(company_name="Globex"))

        assert notification.message == 'New customer "Globex" has been added'
        assert notification.data == {"company_name": "Globex"}


class TestNotificationService:
    """Tests for recipient selection."""

    def test_new_task_goes_to_assignee(self, service, mock_hub):
        recipients = service.notify_new_task({"title": "Call ACME", "assignedTo": "u2"})

        assert recipients == ["u2"]
        user_id, event, data = mock_hub.push_to_user.call_args.args
        assert (user_id, event) == ("u2", "notification")
        assert data["title"] == "New Task Assigned"

    def test_unassigned_task_notifies_nobody(self, service, mock_hub):
        assert service.notify_new_task({"title": "Backlog item"}) == []
        mock_hub.push_to_user.assert_not_called()

    def test_populated_assignee(self, service, mock_hub):
        """Test that a populated user document is reduced to its id."""
        service.notify_new_task({"title": "x", "assignedTo": {"_id": "u2", "name": "Bob"}})

        assert pushed_users(mock_hub) == ["u2"]

    def test_task_update_notifies_assignee_and_watchers(self, service, mock_hub):
        task = {"title": "Call ACME", "assignedTo": "u2", "watchers": ["u3", {"_id": "u4"}]}

        recipients = service.notify_task_update(task, updated_by="u1")

        assert recipients == ["u2", "u3", "u4"]
        titles = [call.args[2]["title"] for call in mock_hub.push_to_user.call_args_list]
        assert titles == ["Task Updated", "Watched Task Updated", "Watched Task Updated"]

    def test_actor_is_never_notified(self, service, mock_hub):
        """Test that the user who made the change gets no notification."""
        task = {"title": "Call ACME", "assignedTo": "u1", "watchers": ["u1", "u3"]}

        recipients = service.notify_task_update(task, updated_by={"_id": "u1"})

        assert recipients == ["u3"]
        assert pushed_users(mock_hub) == ["u3"]

    def test_numeric_ids(self, service, mock_hub):
        task = {"title": "x", "assigned_to": 7, "watchers": [8]}

        assert service.notify_task_update(task, updated_by=9) == ["7", "8"]

    def test_new_customer_goes_to_tenant(self, service, mock_hub):
        tenant = service.notify_new_customer({"companyName": "ACME"}, tenant_id="t1")

        assert tenant == "t1"
        tenant_id, event, data = mock_hub.push_to_tenant.call_args.args
        assert (tenant_id, event) == ("t1", "notification")
        assert data["message"] == 'New customer "ACME" has been added'

    def test_invoice_paid_goes_to_tenant(self, service, mock_hub):
        service.notify_invoice_paid({"invoiceNumber": "INV-7"}, {"companyName": "ACME"}, tenant_id=3)

        tenant_id, _, data = mock_hub.push_to_tenant.call_args.args
        assert tenant_id == "3"
        assert data["title"] == "Invoice Paid"


class TestBroadcastAvailability:
    """Tests that pushes never fail when the realtime layer is down."""

    def test_without_hub(self):
        broadcast = WebSocketBroadcast()

        assert not broadcast.available
        broadcast.push_to_tenant("t1", "notification", {})
        broadcast.push_to_user("u1", "notification", {})
        broadcast.push_to_all("notification", {})

    def test_with_stopped_hub(self, mock_hub):
        mock_hub.running = False
        service = NotificationService(WebSocketBroadcast(mock_hub))

        service.notify_new_task({"title": "x", "assignedTo": "u2"})

        mock_hub.push_to_user.assert_not_called()

    def test_attach_and_detach(self, mock_hub):
        broadcast = WebSocketBroadcast()
        broadcast.attach(mock_hub)

        broadcast.push_to_all("system:announcement", {"text": "hi"})
        broadcast.detach()
        broadcast.push_to_all("system:announcement", {"text": "bye"})

        mock_hub.push_to_all.assert_called_once_with("system:announcement", {"text": "hi"})

    def test_ids_are_stringified(self, mock_hub):
        broadcast = WebSocketBroadcast(mock_hub)

        broadcast.push_to_user(12, "notification", {})

        mock_hub.push_to_user.assert_called_once_with("12", "notification", {})


class TestEndToEnd:
    """Tests through a running hub."""

    @pytest.mark.asyncio
    async def test_task_update_reaches_devices(self, hub, connect):
        _, assignee_phone = await connect("u2", "t1")
        _, assignee_laptop = await connect("u2", "t1")
        _, actor = await connect("u1", "t1")
        service = NotificationService(WebSocketBroadcast(hub))

        service.notify_task_update({"title": "Call ACME", "assignedTo": "u2"}, updated_by="u1")
        await hub.drain()

        expected = {
            "type": "notification",
            "data": {
                "type": "task",
                "title": "Task Updated",
                "message": 'Task "Call ACME" has been updated',
                "data": {"title": "Call ACME", "assignedTo": "u2"},
            },
        }
        assert assignee_phone.sent == [expected]
        assert assignee_laptop.sent == [expected]
        assert actor.sent == []
