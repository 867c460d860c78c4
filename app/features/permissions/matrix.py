"""
Permission matrix data model.

A matrix is an ordered list of module grants. Every module grant carries its
own action set plus an ordered list of sub-module grants, each with an
independent action set:

    [
        {
            "module": "jobs",
            "actions": {"all": false, "create": true, "read": true, ...},
            "subModules": [
                {"name": "Job Posting", "icon": "briefcase", "order": 1,
                 "actions": {"all": false, "read": true, ...}}
            ]
        }
    ]

Invariant: in every action set ``all`` is true exactly when the seven
individual flags are all true. The model never does I/O.
"""
from enum import Enum
from typing import Any, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field, RootModel, model_validator

from app.features.permissions.errors import InconsistentMatrix, InvalidAction
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Actions
# ============================================================================

class Action(str, Enum):
    """The closed set of grantable actions."""
    ALL = "all"
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    PRINT = "print"
    EXPORT = "export"
    APPROVE = "approve"


INDIVIDUAL_ACTIONS: tuple[Action, ...] = tuple(a for a in Action if a is not Action.ALL)


def parse_action(action: Any) -> Action:
    """
    Convert user input to an ``Action``.

    Accepts an ``Action`` or its lowercase name; surrounding whitespace and
    case are ignored.

    Raises:
        InvalidAction: for anything outside the eight action names
    """
    if isinstance(action, Action):
        return action
    if not isinstance(action, str):
        raise InvalidAction(action)
    try:
        return Action(action.strip().lower())
    except ValueError:
        raise InvalidAction(action) from None


# ============================================================================
# Grants
# ============================================================================

class ActionSet(BaseModel):
    """Boolean flag per action. ``all`` is derived from the other seven."""
    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    all: bool = False
    create: bool = False
    read: bool = False
    update: bool = False
    delete: bool = False
    print: bool = False
    export: bool = False
    approve: bool = False

    def flag(self, action: Action) -> bool:
        return getattr(self, action.value)

    def every_individual(self) -> bool:
        return all(self.flag(a) for a in INDIVIDUAL_ACTIONS)

    def any_granted(self) -> bool:
        return any(self.flag(a) for a in Action)

    def is_consistent(self) -> bool:
        return self.all == self.every_individual()

    def apply(self, action: Action, value: bool) -> None:
        """
        Set one flag in place, keeping ``all`` consistent.

        ``all`` cascades down to every individual flag; any individual flag
        cascades up by recomputing ``all``.
        """
        if action is Action.ALL:
            for individual in INDIVIDUAL_ACTIONS:
                setattr(self, individual.value, value)
            self.all = value
        else:
            setattr(self, action.value, value)
            self.all = self.every_individual()

    def repair(self) -> bool:
        """Recompute ``all`` from the individual flags. Returns True if it changed."""
        expected = self.every_individual()
        if self.all != expected:
            self.all = expected
            return True
        return False

    @classmethod
    def granting_all(cls) -> "ActionSet":
        return cls(**{a.value: True for a in Action})


class SubModuleGrant(BaseModel):
    """Grants for one named sub-feature of a module."""
    model_config = ConfigDict(extra="ignore")

    name: str
    icon: str = ""
    order: int = 0
    path: Optional[str] = None
    actions: ActionSet = Field(default_factory=ActionSet)


class ModuleGrant(BaseModel):
    """Grants for one module. Independent of its sub-module grants."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    module: str = Field(..., min_length=1)
    actions: ActionSet = Field(default_factory=ActionSet)
    sub_modules: List[SubModuleGrant] = Field(default_factory=list, alias="subModules")

    @model_validator(mode="after")
    def _unique_sub_module_names(self) -> "ModuleGrant":
        # lookup ignores case and surrounding whitespace, so uniqueness does too
        seen = set()
        for sub_module in self.sub_modules:
            name = sub_module.name.strip().lower()
            if name in seen:
                raise ValueError(f"Duplicate submodule {sub_module.name!r} in module {self.module!r}")
            seen.add(name)
        return self


class PermissionMatrix(RootModel[List[ModuleGrant]]):
    """Ordered list of module grants belonging to one role assignment."""
    root: List[ModuleGrant] = Field(default_factory=list)

    def __iter__(self) -> Iterator[ModuleGrant]:  # type: ignore[override]
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)

    @property
    def modules(self) -> List[ModuleGrant]:
        return self.root

    @classmethod
    def from_document(cls, data: Any) -> "PermissionMatrix":
        """Parse the persisted JSON shape (a list, or None for no grants)."""
        if isinstance(data, cls):
            return data.model_copy(deep=True)
        return cls.model_validate(data or [])

    def to_document(self) -> List[dict]:
        """Serialize to the persisted JSON shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def copy_matrix(self) -> "PermissionMatrix":
        return self.model_copy(deep=True)


# ============================================================================
# Consistency
# ============================================================================

def _action_sets(matrix: PermissionMatrix) -> Iterator[tuple[str, ActionSet]]:
    for grant in matrix:
        yield grant.module, grant.actions
        for sub_module in grant.sub_modules:
            yield f"{grant.module}/{sub_module.name}", sub_module.actions


def check_consistency(matrix: PermissionMatrix) -> None:
    """
    Raises:
        InconsistentMatrix: at the first action set whose ``all`` flag
            disagrees with its individual flags
    """
    for location, actions in _action_sets(matrix):
        if not actions.is_consistent():
            raise InconsistentMatrix(location)


def repair_matrix(matrix: PermissionMatrix) -> PermissionMatrix:
    """Return a copy with every ``all`` flag recomputed from its individual flags."""
    repaired = matrix.copy_matrix()
    for location, actions in _action_sets(repaired):
        if not actions.is_consistent():
            log.warning(f"{InconsistentMatrix(location)}, repairing")
            actions.repair()
    return repaired
