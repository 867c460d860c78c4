"""
Sidebar navigation filtered by a permission matrix.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from app.features.permissions.catalog import DEFAULT_CATALOG, ModuleCatalog
from app.features.permissions.engine import find_by_name, find_module
from app.features.permissions.matrix import PermissionMatrix


class NavigationSubItem(BaseModel):
    name: str
    icon: str = ""
    order: int = 0
    path: Optional[str] = None


class NavigationItem(BaseModel):
    module_key: str
    label: str
    icon: str = ""
    path: Optional[str] = None
    sub_modules: List[NavigationSubItem] = Field(default_factory=list)


def visible_navigation(
    matrix: PermissionMatrix,
    catalog: ModuleCatalog = DEFAULT_CATALOG,
) -> List[NavigationItem]:
    """
    Catalog entries the matrix grants anything on, in catalog order.

    A module is shown when any of its own flags is set or any of its
    sub-modules has a flag set. Only sub-modules with a flag set are listed,
    unless the module itself has ``all``.
    """
    items: List[NavigationItem] = []
    for entry in catalog:
        grant = find_module(matrix, entry.key)
        if grant is None:
            continue

        module_all = grant.actions.all and grant.actions.every_individual()
        sub_items = []
        for catalog_sub in entry.sub_modules:
            sub_grant = find_by_name(grant.sub_modules, catalog_sub.name, lambda sm: sm.name)
            granted = sub_grant is not None and sub_grant.actions.any_granted()
            if module_all or granted:
                sub_items.append(NavigationSubItem(**catalog_sub.model_dump()))

        if not (grant.actions.any_granted() or sub_items):
            continue

        items.append(
            NavigationItem(
                module_key=entry.key,
                label=entry.label or entry.key,
                icon=entry.icon,
                path=entry.path,
                sub_modules=sub_items,
            )
        )
    return items
