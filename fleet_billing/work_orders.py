import logging
from typing import List, Optional

from .access import can_delete, visible
from .datatypes import InstallationOrder, User, WorkOrder, ROLE_MANAGER, ROLE_MASTER, ROLE_TECHNICIAN
from .errors import NotFoundError, ValidationError
from .fleet import get_client
from .records import (installation_order_from_doc, installation_order_to_doc,
                      work_order_from_doc, work_order_to_doc)
from .store import INSTALLATION_ORDERS, WORK_ORDERS, MemoryStore, new_id

logger = logging.getLogger(__name__)

# Fields a technician may change on an order assigned to them
TECHNICIAN_FIELDS = ('status',)


def list_work_orders(store: MemoryStore, user: Optional[User]) -> List[WorkOrder]:
    orders = [work_order_from_doc(i, d) for i, d in store.query(WORK_ORDERS)]
    return sorted(visible(user, orders), key=lambda o: o.id)


def list_installation_orders(store: MemoryStore, user: Optional[User]) -> List[InstallationOrder]:
    orders = [installation_order_from_doc(i, d) for i, d in store.query(INSTALLATION_ORDERS)]
    return sorted(visible(user, orders), key=lambda o: o.id)


def save_work_order(store: MemoryStore, order: WorkOrder, user: User) -> WorkOrder:
    if user.role not in (ROLE_MASTER, ROLE_MANAGER):
        raise ValidationError("Not allowed to save work orders")
    if not order.id:
        order.id = new_id()
        order.owner_id = order.owner_id or user.id
    with store.transaction() as tx:
        current = tx.get(WORK_ORDERS, order.id)
        if current is not None and user.role != ROLE_MASTER and current.get('owner_id') != user.id:
            raise ValidationError("Not allowed to edit this work order")
        tx.set(WORK_ORDERS, order.id, work_order_to_doc(order))
    logger.info(f"Saved work order {order.id}")
    return order


def save_installation_order(store: MemoryStore, order: InstallationOrder, user: User) -> InstallationOrder:
    """
    Create or edit an installation order.

    Masters and managers save the whole order; the assigned technician may
    only update TECHNICIAN_FIELDS.
    """
    with store.transaction() as tx:
        get_client(tx, order.client_id)

        if user.role == ROLE_TECHNICIAN:
            current_doc = tx.get(INSTALLATION_ORDERS, order.id) if order.id else None
            if current_doc is None:
                raise NotFoundError("Installation order not found")
            if current_doc.get('technician_id') != user.id:
                raise ValidationError("This order is not assigned to you")
            changes = {f: getattr(order, f) for f in TECHNICIAN_FIELDS}
            tx.update(INSTALLATION_ORDERS, order.id, changes)
            logger.info(f"Technician {user.id} updated installation order {order.id}")
            return installation_order_from_doc(order.id, {**current_doc, **changes})

        if user.role not in (ROLE_MASTER, ROLE_MANAGER):
            raise ValidationError("Not allowed to save installation orders")
        if not order.id:
            order.id = new_id()
            order.owner_id = order.owner_id or user.id
        else:
            current_doc = tx.get(INSTALLATION_ORDERS, order.id)
            if current_doc is not None and user.role != ROLE_MASTER and current_doc.get('owner_id') != user.id:
                raise ValidationError("Not allowed to edit this installation order")
        tx.set(INSTALLATION_ORDERS, order.id, installation_order_to_doc(order))

    logger.info(f"Saved installation order {order.id}")
    return order


def delete_order(store: MemoryStore, collection: str, order_id: str, user: User) -> None:
    with store.transaction() as tx:
        doc = tx.get(collection, order_id)
        if doc is None:
            raise NotFoundError("Order not found")
        if not can_delete(user, doc.get('owner_id')):
            raise ValidationError("Not allowed to delete this order")
        tx.delete(collection, order_id)
    logger.info(f"Deleted {collection} {order_id}")
