"""
Module catalog.

The catalog declares which modules exist and which sub-modules each one has.
It is the single source of truth for the *shape* of a permission matrix; the
matrix only holds the flag values.
"""
from typing import Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.features.permissions.engine import find_by_name, strip_role_prefix
from app.features.permissions.errors import UnknownModule, UnknownSubModule


class CatalogSubModule(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1)
    icon: str = ""
    order: int = 0
    path: Optional[str] = None


class CatalogEntry(BaseModel):
    """One module known to the system."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    key: str = Field(..., min_length=1, description="Bare module key, e.g. 'jobs'")
    label: Optional[str] = None
    icon: str = ""
    description: Optional[str] = None
    path: Optional[str] = None
    sub_modules: List[CatalogSubModule] = Field(default_factory=list, alias="subModules")

    def find_sub_module(self, name: str) -> Optional[CatalogSubModule]:
        return find_by_name(self.sub_modules, name, lambda sm: sm.name)

    def require_sub_module(self, name: str) -> CatalogSubModule:
        """
        Raises:
            UnknownSubModule: if ``name`` is not declared for this module
        """
        sub_module = self.find_sub_module(name)
        if sub_module is None:
            raise UnknownSubModule(self.key, name)
        return sub_module


class ModuleCatalog:
    """Ordered, read-only collection of catalog entries."""

    def __init__(self, entries: List[CatalogEntry]):
        self._entries = list(entries)
        self._by_key = {strip_role_prefix(entry.key): entry for entry in self._entries}

    @classmethod
    def from_list(cls, data: List[dict]) -> "ModuleCatalog":
        return cls([CatalogEntry.model_validate(item) for item in data])

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, module_key: str) -> Optional[CatalogEntry]:
        """Look up an entry by bare or role-prefixed key."""
        return self._by_key.get(module_key) or self._by_key.get(strip_role_prefix(module_key))

    def require(self, module_key: str) -> CatalogEntry:
        """
        Raises:
            UnknownModule: if no entry matches ``module_key``
        """
        entry = self.get(module_key)
        if entry is None:
            raise UnknownModule(module_key)
        return entry

    def to_list(self) -> List[dict]:
        return [entry.model_dump(by_alias=True, exclude_none=True) for entry in self._entries]


# ============================================================================
# Default catalog
# ============================================================================

DEFAULT_MODULES: List[dict] = [
    {"key": "dashboard", "label": "Dashboard", "icon": "home", "description": "Overview & metrics"},
    {"key": "health_center", "label": "Manage Health Center", "icon": "calendar", "description": "Manage Clinic"},
    {"key": "review", "label": "Review", "icon": "user", "description": "Check all review"},
    {"key": "enquiry", "label": "Enquiry", "icon": "stethoscope", "description": "All Patient Enquiries"},
    {
        "key": "jobs",
        "label": "Jobs",
        "icon": "briefcase",
        "description": "Manage job postings",
        "subModules": [
            {"name": "Job Posting", "icon": "megaphone", "order": 1},
            {"name": "See All Jobs", "icon": "briefcase", "order": 2},
            {"name": "See Job Applicants", "icon": "users", "order": 3},
        ],
    },
    {
        "key": "blogs",
        "label": "Blogs",
        "icon": "file-text",
        "description": "Manage Blogs",
        "subModules": [
            {"name": "Write Blog", "icon": "edit", "order": 1},
            {"name": "Published and Drafts Blogs", "icon": "file-text", "order": 2},
            {"name": "Analytics of blog", "icon": "bar-chart", "order": 3},
        ],
    },
    {
        "key": "lead",
        "label": "Lead Management",
        "icon": "target",
        "description": "Capture and assign leads",
        "subModules": [
            {"name": "Create Lead", "icon": "plus", "order": 1},
            {"name": "Assign Lead", "icon": "user-check", "order": 2},
        ],
    },
    {"key": "create_offers", "label": "Offers", "icon": "tag", "description": "Create and manage offers"},
    {"key": "marketing", "label": "Marketing", "icon": "mail", "description": "Campaigns and segments"},
    {
        "key": "staff_management",
        "label": "Staff Management",
        "icon": "users",
        "description": "Manage staff and their access",
        "subModules": [
            {"name": "Create Agent", "icon": "user-plus", "order": 1},
            {"name": "Manage Clinic Permissions", "icon": "shield", "order": 2},
        ],
    },
    {"key": "prescription_requests", "label": "Prescription Requests", "icon": "clipboard", "description": "Patient prescription requests"},
]

DEFAULT_CATALOG = ModuleCatalog.from_list(DEFAULT_MODULES)
