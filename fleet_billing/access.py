"""
Who may see and change which records.

Masters see everything, managers see what they own, analysts see what
their creating manager owns, and technicians see only the installation
orders assigned to them.
"""

from typing import Iterable, List, Optional, TypeVar

from .datatypes import User, ROLE_ANALYST, ROLE_MANAGER, ROLE_MASTER, ROLE_TECHNICIAN

T = TypeVar('T')


def can_view(user: Optional[User], owner_id: Optional[str],
             technician_id: Optional[str] = None) -> bool:
    if user is None:
        return False
    if user.role == ROLE_MASTER:
        return True
    if user.role == ROLE_MANAGER:
        return owner_id is not None and owner_id == user.id
    if user.role == ROLE_ANALYST:
        return owner_id is not None and owner_id == user.creator_id
    if user.role == ROLE_TECHNICIAN:
        return technician_id is not None and technician_id == user.id
    return False


def can_delete(user: Optional[User], owner_id: Optional[str]) -> bool:
    """Deleting is limited to masters and to managers on their own records"""
    if user is None:
        return False
    if user.role == ROLE_MASTER:
        return True
    return user.role == ROLE_MANAGER and owner_id == user.id


def visible(user: Optional[User], records: Iterable[T]) -> List[T]:
    """Filter records carrying `owner_id` (and optionally `technician_id`)"""
    return [r for r in records
            if can_view(user, getattr(r, 'owner_id', None), getattr(r, 'technician_id', None))]
