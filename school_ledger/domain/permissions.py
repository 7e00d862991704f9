"""Role capability matrix - closed set of (module, action) grants per role"""

from enum import Enum
from typing import Dict, FrozenSet, Iterable, Tuple
from school_ledger.domain.exceptions import PermissionDeniedError


class Module(str, Enum):
    INCOME = "income"
    EXPENSES = "expenses"
    STUDENTS = "students"
    PLANS = "plans"
    BUDGETS = "budgets"


class Action(str, Enum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    VOID = "void"
    DELETE = "delete"


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    BURSAR = "bursar"
    DIRECTOR = "director"
    ACCOUNTANT = "accountant"
    VIEWER = "viewer"


Capability = Tuple[Module, Action]


def _grant(modules: Iterable[Module], actions: Iterable[Action]) -> FrozenSet[Capability]:
    actions = list(actions)
    return frozenset((m, a) for m in modules for a in actions)


_EVERYTHING = _grant(Module, Action)
_VIEW_ALL = _grant(Module, [Action.VIEW])

# Every role is listed explicitly; anything not granted here is denied.
CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.SUPER_ADMIN: _EVERYTHING,
    Role.ADMIN: _EVERYTHING,
    Role.BURSAR: _VIEW_ALL
    | _grant([Module.INCOME, Module.EXPENSES, Module.STUDENTS, Module.PLANS], [Action.CREATE, Action.EDIT])
    | _grant([Module.BUDGETS], [Action.CREATE]),
    Role.DIRECTOR: _VIEW_ALL,
    Role.ACCOUNTANT: _VIEW_ALL | _grant([Module.INCOME, Module.EXPENSES, Module.STUDENTS], [Action.CREATE]),
    Role.VIEWER: _VIEW_ALL,
}

missing = set(Role) - set(CAPABILITIES)
if missing:
    raise RuntimeError(f"Capability matrix has no entry for roles: {sorted(r.value for r in missing)}")
del missing


def is_allowed(role: str, module: Module, action: Action) -> bool:
    """Unknown roles are denied rather than defaulted"""
    try:
        resolved = Role(role)
    except ValueError:
        return False
    return (module, action) in CAPABILITIES[resolved]


def ensure_allowed(role: str, module: Module, action: Action) -> None:
    if not is_allowed(role, module, action):
        raise PermissionDeniedError(f"Role '{role}' may not {action.value} {module.value}")
