from app.features.permissions.catalog import ModuleCatalog
from app.features.permissions.editor import full_access_matrix, set_action
from app.features.permissions.matrix import PermissionMatrix
from app.features.permissions.navigation import visible_navigation


CATALOG = ModuleCatalog.from_list([
    {"key": "dashboard", "label": "Dashboard", "icon": "home"},
    {
        "key": "jobs",
        "label": "Jobs",
        "icon": "briefcase",
        "subModules": [
            {"name": "Job Posting", "icon": "megaphone", "order": 1},
            {"name": "See All Jobs", "icon": "briefcase", "order": 2},
        ],
    },
    {"key": "blogs", "label": "Blogs"},
])


def test_empty_matrix_shows_nothing():
    assert visible_navigation(PermissionMatrix(), CATALOG) == []


def test_module_flag_shows_module_without_sub_modules():
    matrix = set_action(PermissionMatrix(), "jobs", "read", True, catalog=CATALOG)
    items = visible_navigation(matrix, CATALOG)

    assert [item.module_key for item in items] == ["jobs"]
    assert items[0].label == "Jobs"
    assert items[0].sub_modules == []


def test_sub_module_flag_shows_only_that_sub_module():
    matrix = set_action(PermissionMatrix(), "clinic_jobs", "create", True, "See All Jobs", CATALOG)
    items = visible_navigation(matrix, CATALOG)

    assert [item.module_key for item in items] == ["jobs"]
    assert [sm.name for sm in items[0].sub_modules] == ["See All Jobs"]


def test_module_all_shows_every_sub_module():
    matrix = set_action(PermissionMatrix(), "jobs", "all", True, catalog=CATALOG)
    items = visible_navigation(matrix, CATALOG)
    assert [sm.name for sm in items[0].sub_modules] == ["Job Posting", "See All Jobs"]


def test_items_follow_catalog_order():
    matrix = PermissionMatrix()
    for key in ("blogs", "dashboard", "jobs"):
        matrix = set_action(matrix, key, "read", True, catalog=CATALOG)
    items = visible_navigation(matrix, CATALOG)
    assert [item.module_key for item in items] == ["dashboard", "jobs", "blogs"]


def test_legacy_prefixed_grant_is_visible():
    matrix = PermissionMatrix.from_document([{"module": "doctor_dashboard", "actions": {"read": True}}])
    assert [item.module_key for item in visible_navigation(matrix, CATALOG)] == ["dashboard"]


def test_label_defaults_to_key():
    matrix = set_action(PermissionMatrix(), "blogs", "read", True, catalog=CATALOG)
    assert visible_navigation(matrix, CATALOG)[0].label == "Blogs"

    catalog = ModuleCatalog.from_list([{"key": "reports"}])
    matrix = set_action(PermissionMatrix(), "reports", "read", True, catalog=catalog)
    assert visible_navigation(matrix, catalog)[0].label == "reports"


def test_full_access_shows_whole_catalog():
    items = visible_navigation(full_access_matrix(CATALOG), CATALOG)
    assert [item.module_key for item in items] == ["dashboard", "jobs", "blogs"]
    assert len(items[1].sub_modules) == 2
