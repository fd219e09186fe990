"""
Notification formatting for domain events.

Builds the ``{type, title, message, data}`` payload for the domain events the
CRM recognizes and pushes it under the ``notification`` event. Actors are
never notified about their own task changes; customer and invoice
notifications go to the whole tenant, creator included.

Entities may be plain dicts (e.g. documents from the store) or objects such
as pydantic models; camelCase and snake_case field names are both accepted.
"""

import logging
from typing import Any, List, Optional

from pydantic import BaseModel

from skycrm_backend.websocket.broadcast import WebSocketBroadcast
from skycrm_types.websocket import NOTIFICATION_EVENT, Notification

logger = logging.getLogger(__name__)


def _field(entity: Any, *names: str) -> Any:
    """Read the first present field among ``names``."""
    for name in names:
        if isinstance(entity, dict):
            if entity.get(name) is not None:
                return entity[name]
        elif getattr(entity, name, None) is not None:
            return getattr(entity, name)
    return None


def _identifier(value: Any) -> Optional[str]:
    """Normalize a reference (raw id or populated document) to a string id."""
    if value is None:
        return None
    if isinstance(value, dict) or isinstance(value, BaseModel):
        value = _field(value, "_id", "id")
        if value is None:
            return None
    return str(value)


def _payload(entity: Any) -> Any:
    if isinstance(entity, BaseModel):
        return entity.model_dump(mode="json", by_alias=True)
    return entity


# =============================================================================
# Payload builders
# =============================================================================

def new_task_notification(task: Any) -> Notification:
    return Notification(
        type="task",
        title="New Task Assigned",
        message=f"You have been assigned a new task: {_field(task, 'title')}",
        data=_payload(task),
    )


def task_update_notification(task: Any, watched: bool = False) -> Notification:
    return Notification(
        type="task",
        title="Watched Task Updated" if watched else "Task Updated",
        message=f'Task "{_field(task, "title")}" has been updated',
        data=_payload(task),
    )


def new_customer_notification(customer: Any) -> Notification:
    return Notification(
        type="customer",
        title="New Customer Added",
        message=f'New customer "{_field(customer, "companyName", "company_name")}" has been added',
        data=_payload(customer),
    )


def invoice_paid_notification(invoice: Any, customer: Any) -> Notification:
    invoice_number = _field(invoice, "invoiceNumber", "invoice_number")
    company_name = _field(customer, "companyName", "company_name")
    return Notification(
        type="invoice",
        title="Invoice Paid",
        message=f"Invoice {invoice_number} from {company_name} has been paid",
        data=_payload(invoice),
    )


# =============================================================================
# Delivery
# =============================================================================

class NotificationService:
    """
    Pushes formatted notifications through the broadcast service.

    The ``notify_*`` methods return the user ids (or tenant id) a notification
    was addressed to, which is handy for logging in the calling endpoint.
    """

    def __init__(self, broadcast: WebSocketBroadcast):
        self.broadcast = broadcast

    def _to_user(self, user_id: str, notification: Notification):
        self.broadcast.push_to_user(user_id, NOTIFICATION_EVENT, notification.model_dump())

    def _to_tenant(self, tenant_id: str, notification: Notification):
        self.broadcast.push_to_tenant(tenant_id, NOTIFICATION_EVENT, notification.model_dump())

    def notify_new_task(self, task: Any) -> List[str]:
        """Notify the assignee of a new task. No-op for unassigned tasks."""
        assignee = _identifier(_field(task, "assignedTo", "assigned_to"))
        if not assignee:
            return []

        self._to_user(assignee, new_task_notification(task))
        return [assignee]

    def notify_task_update(self, task: Any, updated_by: Any) -> List[str]:
        """
        Notify the assignee and the watchers of a task update.

        Whoever made the update is skipped, as assignee and as watcher.
        """
        actor = _identifier(updated_by)
        notified: List[str] = []

        assignee = _identifier(_field(task, "assignedTo", "assigned_to"))
        if assignee and assignee != actor:
            self._to_user(assignee, task_update_notification(task))
            notified.append(assignee)

        watchers = _field(task, "watchers") or []
        if watchers:
            notification = task_update_notification(task, watched=True)
            for watcher in watchers:
                watcher_id = _identifier(watcher)
                if not watcher_id or watcher_id == actor:
                    continue
                self._to_user(watcher_id, notification)
                notified.append(watcher_id)

        logger.debug(f"Task update notified {len(notified)} user(s)")
        return notified

    def notify_new_customer(self, customer: Any, tenant_id: Any) -> str:
        """Tell the whole tenant about a new customer."""
        self._to_tenant(str(tenant_id), new_customer_notification(customer))
        return str(tenant_id)

    def notify_invoice_paid(self, invoice: Any, customer: Any, tenant_id: Any) -> str:
        """Tell the whole tenant that an invoice has been paid."""
        self._to_tenant(str(tenant_id), invoice_paid_notification(invoice, customer))
        return str(tenant_id)
