"""
Permission resolution engine.

Decides whether a permission matrix allows ``(module_key, action, sub_module)``.

The same logical module is addressed with different literal keys depending on
which role issues the check: ``jobs``, ``admin_jobs``, ``clinic_jobs``,
``doctor_jobs`` or ``agent_jobs``. Resolution tries a fixed list of candidate
keys and then falls back to comparing prefix-stripped keys, so a matrix
authored under one naming convention answers checks made under another.

Every resolution failure is a deny. ``is_allowed`` never raises.
"""
from typing import Any, Callable, Iterable, List, Optional, TypeVar

from pydantic import ValidationError

from app.features.permissions.errors import (
    InvalidAction,
    ModuleNotFound,
    SubModuleNotFound,
)
from app.features.permissions.matrix import (
    Action,
    ActionSet,
    ModuleGrant,
    PermissionMatrix,
    SubModuleGrant,
    parse_action,
)
from app.utils import get_logger


log = get_logger(__name__)

T = TypeVar("T")

# Legacy role prefixes stripped from module keys
ROLE_PREFIXES: tuple[str, ...] = ("admin_", "clinic_", "doctor_", "agent_")

# Prefixes re-applied to the bare key when building lookup candidates
CANDIDATE_PREFIXES: tuple[str, ...] = ("clinic_", "agent_", "doctor_")


# ============================================================================
# Key normalization
# ============================================================================

def strip_role_prefix(module_key: str) -> str:
    """Remove one leading role prefix, e.g. ``clinic_jobs`` -> ``jobs``."""
    for prefix in ROLE_PREFIXES:
        if module_key.startswith(prefix):
            return module_key[len(prefix):]
    return module_key


def module_candidates(module_key: str) -> List[str]:
    """
    Ordered, de-duplicated lookup keys for a requested module key.

    ``admin_jobs`` -> ``["admin_jobs", "jobs", "clinic_jobs", "agent_jobs", "doctor_jobs"]``
    """
    bare = strip_role_prefix(module_key)
    candidates = [module_key, bare] + [prefix + bare for prefix in CANDIDATE_PREFIXES]
    return list(dict.fromkeys(candidates))


def find_by_name(items: Iterable[T], name: str, get_name: Callable[[T], str]) -> Optional[T]:
    """
    Find an item by name: exact match, then case-insensitive, then trimmed.

    The trimmed pass also ignores case.
    """
    items = list(items)
    for item in items:
        if get_name(item) == name:
            return item
    lowered = name.lower()
    for item in items:
        if get_name(item).lower() == lowered:
            return item
    trimmed = name.strip().lower()
    for item in items:
        if get_name(item).strip().lower() == trimmed:
            return item
    return None


# ============================================================================
# Lookup
# ============================================================================

def resolve_module(matrix: PermissionMatrix, module_key: str) -> ModuleGrant:
    """
    Find the module grant governing ``module_key``.

    Direct lookup tries each candidate key in order and returns the first
    grant whose ``module`` equals it. When none matches, every grant is
    scanned again comparing prefix-stripped keys on both sides.

    Raises:
        ModuleNotFound: when neither pass finds a grant
    """
    candidates = module_candidates(module_key)

    by_key: dict[str, ModuleGrant] = {}
    for grant in matrix:
        by_key.setdefault(grant.module, grant)

    for candidate in candidates:
        if candidate in by_key:
            return by_key[candidate]

    stripped_candidates = [strip_role_prefix(c) for c in candidates]
    for grant in matrix:
        if strip_role_prefix(grant.module) in stripped_candidates:
            return grant

    raise ModuleNotFound(module_key, candidates)


def resolve_sub_module(grant: ModuleGrant, sub_module_name: str) -> SubModuleGrant:
    """
    Raises:
        SubModuleNotFound: when no sub-module of ``grant`` matches the name
    """
    sub_module = find_by_name(grant.sub_modules, sub_module_name, lambda sm: sm.name)
    if sub_module is None:
        raise SubModuleNotFound(grant.module, sub_module_name)
    return sub_module


def find_module(matrix: PermissionMatrix, module_key: str) -> Optional[ModuleGrant]:
    """Like ``resolve_module`` but returns None on a miss."""
    try:
        return resolve_module(matrix, module_key)
    except ModuleNotFound:
        return None


# ============================================================================
# Evaluation
# ============================================================================

def evaluate(actions: ActionSet, action: Action) -> bool:
    """
    Evaluate one action against an action set.

    ``all`` is recomputed from the individual flags first, so a stored
    ``all: true`` next to a false flag does not grant anything extra.
    """
    effective_all = actions.every_individual()
    if action is Action.ALL:
        return effective_all
    return actions.flag(action) or effective_all


def _coerce_matrix(matrix: Any) -> PermissionMatrix:
    if isinstance(matrix, PermissionMatrix):
        return matrix
    return PermissionMatrix.from_document(matrix)


def is_allowed(
    matrix: Any,
    module_key: str,
    action: Any,
    sub_module_name: Optional[str] = None,
) -> bool:
    """
    Check whether ``matrix`` grants ``action`` on a module or sub-module.

    Args:
        matrix: PermissionMatrix or its persisted JSON shape
        module_key: Module key, bare or role-prefixed (e.g. "jobs", "clinic_jobs")
        action: One of the eight action names
        sub_module_name: Optional sub-module name (e.g. "Job Posting")

    Returns:
        True only when the target action set grants the action. Unknown
        actions, unknown modules or sub-modules and malformed matrices
        all return False.
    """
    if not isinstance(module_key, str) or not module_key:
        log.debug(f"Permission denied: invalid module key {module_key!r}")
        return False
    if sub_module_name is not None and not isinstance(sub_module_name, str):
        log.debug(f"Permission denied: invalid submodule name {sub_module_name!r}")
        return False

    try:
        parsed_action = parse_action(action)
        grants = _coerce_matrix(matrix)
        grant = resolve_module(grants, module_key)
        if sub_module_name is not None:
            target = resolve_sub_module(grant, sub_module_name).actions
        else:
            target = grant.actions
    except (InvalidAction, ModuleNotFound, SubModuleNotFound) as e:
        log.debug(f"Permission denied for {module_key}:{action}: {e}")
        return False
    except ValidationError as e:
        log.debug(f"Permission denied for {module_key}:{action}: malformed matrix ({e.error_count()} errors)")
        return False

    return evaluate(target, parsed_action)


def can_grant(
    grantor_matrix: Any,
    module_key: str,
    action: Any,
    sub_module_name: Optional[str] = None,
) -> bool:
    """
    Check whether an editor holding ``grantor_matrix`` may grant ``action``.

    An editor can only hand out what it holds itself. Granting ``all`` needs
    the editor's own ``all`` on the same target.
    """
    return is_allowed(grantor_matrix, module_key, action, sub_module_name)


def ungrantable_actions(matrix: Any, grantor_matrix: Any) -> List[str]:
    """
    List every flag set in ``matrix`` that ``grantor_matrix`` could not grant.

    Entries look like ``jobs:create`` or ``jobs/Job Posting:read``.
    """
    exceeding: List[str] = []
    for grant in _coerce_matrix(matrix):
        for action in Action:
            if grant.actions.flag(action) and not can_grant(grantor_matrix, grant.module, action):
                exceeding.append(f"{grant.module}:{action.value}")
        for sub_module in grant.sub_modules:
            for action in Action:
                if sub_module.actions.flag(action) and not can_grant(
                    grantor_matrix, grant.module, action, sub_module.name
                ):
                    exceeding.append(f"{grant.module}/{sub_module.name}:{action.value}")
    return exceeding
