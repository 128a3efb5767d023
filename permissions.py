from enum import Enum
from typing import Dict, FrozenSet, Optional, Union

from schema import Role, User


class Action(str, Enum):
    VIEW_PRODUCTS = "view_products"
    VIEW_CATEGORIES = "view_categories"
    VIEW_TRANSACTIONS = "view_transactions"
    ADD_TRANSACTIONS = "add_transactions"
    # admin only
    MANAGE_PRODUCTS = "manage_products"
    MANAGE_CATEGORIES = "manage_categories"
    VIEW_SUPPLIERS = "view_suppliers"
    MANAGE_SUPPLIERS = "manage_suppliers"
    VIEW_USERS = "view_users"
    MANAGE_USERS = "manage_users"
    VIEW_REPORTS = "view_reports"
    MANAGE_SETTINGS = "manage_settings"


_VIEWER_ACTIONS = frozenset({
    Action.VIEW_PRODUCTS.value,
    Action.VIEW_CATEGORIES.value,
    Action.VIEW_TRANSACTIONS.value,
})

# Admin is not listed: it is allowed everything.
ROLE_ACTIONS: Dict[Role, FrozenSet[str]] = {
    Role.EDITOR: _VIEWER_ACTIONS | {Action.ADD_TRANSACTIONS.value},
    Role.VIEWER: _VIEWER_ACTIONS,
}


def has_permission(role: Optional[Union[Role, str]], action: Union[Action, str]) -> bool:
    """Whether ``role`` may perform ``action``.

    Unknown or missing roles get nothing.
    """
    if role is None:
        return False
    try:
        role = Role(role)
    except ValueError:
        return False
    if role is Role.ADMIN:
        return True
    action = action.value if isinstance(action, Action) else action
    return action in ROLE_ACTIONS.get(role, frozenset())


def user_has_permission(user: Optional[User], action: Union[Action, str]) -> bool:
    return has_permission(user.role if user else None, action)
