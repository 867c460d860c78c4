"""
Write-side operations on a permission matrix.

Every operation returns a new matrix and leaves its input untouched, so a
validation error never leaves a half-applied change behind. Module and
sub-module lookup goes through the resolution engine, so the editor and the
runtime checks agree on what a module key means.
"""
from typing import Any, Optional

from app.features.permissions.catalog import (
    DEFAULT_CATALOG,
    CatalogEntry,
    CatalogSubModule,
    ModuleCatalog,
)
from app.features.permissions.engine import find_by_name, find_module, resolve_module, strip_role_prefix
from app.features.permissions.errors import DuplicateModule
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


def canonical_module_key(module_key: str, catalog: ModuleCatalog = DEFAULT_CATALOG) -> str:
    """Bare catalog key for a bare or role-prefixed key, e.g. ``clinic_jobs`` -> ``jobs``."""
    entry = catalog.get(module_key)
    return strip_role_prefix(entry.key if entry is not None else module_key)


def _new_sub_module(catalog_sub: CatalogSubModule) -> SubModuleGrant:
    return SubModuleGrant(
        name=catalog_sub.name,
        icon=catalog_sub.icon,
        order=catalog_sub.order,
        path=catalog_sub.path,
        actions=ActionSet(),
    )


def _new_module(module_key: str, catalog_entry: CatalogEntry) -> ModuleGrant:
    return ModuleGrant(
        module=module_key,
        actions=ActionSet(),
        sub_modules=[_new_sub_module(sub) for sub in catalog_entry.sub_modules],
    )


def ensure_module(
    matrix: PermissionMatrix,
    module_key: str,
    catalog_entry: CatalogEntry,
) -> PermissionMatrix:
    """
    Return a copy of ``matrix`` that contains a grant for ``module_key``.

    A missing module is appended with every flag false and its sub-modules
    seeded (false) from ``catalog_entry``. New grants use the bare key.
    Calling it again with the same arguments changes nothing.
    """
    updated = PermissionMatrix.from_document(matrix)
    if find_module(updated, module_key) is None and find_module(updated, catalog_entry.key) is None:
        canonical_key = strip_role_prefix(catalog_entry.key)
        updated.root.append(_new_module(canonical_key, catalog_entry))
        log.debug(f"Seeded module {canonical_key!r} from catalog")
    return updated


def _ensure_sub_module(grant: ModuleGrant, catalog_sub: CatalogSubModule) -> SubModuleGrant:
    sub_module = find_by_name(grant.sub_modules, catalog_sub.name, lambda sm: sm.name)
    if sub_module is None:
        sub_module = _new_sub_module(catalog_sub)
        grant.sub_modules.append(sub_module)
    return sub_module


def set_action(
    matrix: PermissionMatrix,
    module_key: str,
    action: Any,
    value: bool,
    sub_module_name: Optional[str] = None,
    catalog: ModuleCatalog = DEFAULT_CATALOG,
) -> PermissionMatrix:
    """
    Set one flag and return the updated matrix.

    ``all`` cascades down to every flag of the target action set; any other
    action sets that flag and recomputes ``all``. The target is the module's
    own action set, or the named sub-module's when ``sub_module_name`` is
    given. The two never affect each other.

    Args:
        matrix: Current matrix (not modified)
        module_key: Module key, bare or role-prefixed
        action: One of the eight action names
        value: New flag value
        sub_module_name: Optional sub-module declared in the catalog
        catalog: Module catalog used to validate and seed the shape

    Raises:
        InvalidAction: unknown action name
        UnknownModule: module not in the catalog
        UnknownSubModule: sub-module not declared for the module
    """
    parsed_action = parse_action(action)
    entry = catalog.require(module_key)
    catalog_sub = entry.require_sub_module(sub_module_name) if sub_module_name is not None else None

    updated = ensure_module(matrix, module_key, entry)
    grant = resolve_module(updated, module_key)

    if catalog_sub is None:
        target = grant.actions
    else:
        target = _ensure_sub_module(grant, catalog_sub).actions

    target.apply(parsed_action, bool(value))
    return updated


def set_aggregate(
    matrix: PermissionMatrix,
    module_key: str,
    value: bool,
    sub_module_name: Optional[str] = None,
    catalog: ModuleCatalog = DEFAULT_CATALOG,
) -> PermissionMatrix:
    """Toggle the ``all`` flag, cascading to every individual action."""
    return set_action(matrix, module_key, Action.ALL, value, sub_module_name, catalog)


def complete_matrix(
    matrix: PermissionMatrix,
    catalog: ModuleCatalog = DEFAULT_CATALOG,
) -> PermissionMatrix:
    """Add an all-false grant for every catalog module the matrix lacks."""
    completed = PermissionMatrix.from_document(matrix)
    for entry in catalog:
        completed = ensure_module(completed, entry.key, entry)
    return completed


def canonicalize_matrix(
    matrix: PermissionMatrix,
    catalog: ModuleCatalog = DEFAULT_CATALOG,
) -> PermissionMatrix:
    """
    Rewrite legacy role-prefixed module keys to their bare catalog key.

    Only the grant that the bare key resolves to is renamed, so every
    bare or prefixed check resolves to the same grant before and after. A
    prefixed grant keeps its key when a grant with the bare key already
    exists, since merging two grants would change what they allow.
    """
    canonical = PermissionMatrix.from_document(matrix)
    present = {grant.module for grant in canonical}
    for grant in canonical:
        if catalog.get(grant.module) is None:
            continue
        bare = canonical_module_key(grant.module, catalog)
        if grant.module == bare or bare in present:
            continue
        if resolve_module(canonical, bare) is grant:
            log.info(f"Renaming legacy module key {grant.module!r} to {bare!r}")
            present.discard(grant.module)
            present.add(bare)
            grant.module = bare
    return canonical


def validate_shape(
    matrix: PermissionMatrix,
    catalog: ModuleCatalog = DEFAULT_CATALOG,
) -> None:
    """
    Check that every module and sub-module of ``matrix`` is in the catalog
    and that no module key is used twice.

    Raises:
        DuplicateModule: module key on more than one grant
        UnknownModule: module key with no catalog entry
        UnknownSubModule: sub-module not declared for its module
    """
    seen = set()
    for grant in matrix:
        if grant.module in seen:
            raise DuplicateModule(grant.module)
        seen.add(grant.module)
        entry = catalog.require(grant.module)
        for sub_module in grant.sub_modules:
            entry.require_sub_module(sub_module.name)


def full_access_matrix(catalog: ModuleCatalog = DEFAULT_CATALOG) -> PermissionMatrix:
    """Every catalog module and sub-module with ``all`` set."""
    matrix = PermissionMatrix()
    for entry in catalog:
        grant = _new_module(strip_role_prefix(entry.key), entry)
        grant.actions = ActionSet.granting_all()
        for sub_module in grant.sub_modules:
            sub_module.actions = ActionSet.granting_all()
        matrix.root.append(grant)
    return matrix
