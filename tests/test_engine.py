import pytest

from app.features.permissions.engine import (
    can_grant,
    find_by_name,
    is_allowed,
    module_candidates,
    resolve_module,
    strip_role_prefix,
    ungrantable_actions,
)
from app.features.permissions.errors import ModuleNotFound
from app.features.permissions.matrix import Action, ActionSet, INDIVIDUAL_ACTIONS, PermissionMatrix


def _grant(module, **flags):
    return {"module": module, "actions": flags}


# Concrete jobs / "Job Posting" scenario

def test_module_level_flags(jobs_matrix):
    assert is_allowed(jobs_matrix, "jobs", "create") is True
    assert is_allowed(jobs_matrix, "jobs", "delete") is False


def test_sub_module_flags(jobs_matrix):
    assert is_allowed(jobs_matrix, "jobs", "read", "Job Posting") is True
    assert is_allowed(jobs_matrix, "jobs", "create", "Job Posting") is False


def test_module_and_sub_module_are_independent(jobs_matrix):
    # read is only granted on the sub-module, create only on the module
    assert is_allowed(jobs_matrix, "jobs", "read") is False
    assert is_allowed(jobs_matrix, "jobs", "create", "Job Posting") is False


# Key normalisation

@pytest.mark.parametrize("key,expected", [
    ("jobs", "jobs"),
    ("admin_jobs", "jobs"),
    ("clinic_jobs", "jobs"),
    ("doctor_jobs", "jobs"),
    ("agent_jobs", "jobs"),
    ("clinic_agent_jobs", "agent_jobs"),
    ("staff_management", "staff_management"),
])
def test_strip_role_prefix(key, expected):
    assert strip_role_prefix(key) == expected


def test_module_candidates_order():
    assert module_candidates("admin_jobs") == [
        "admin_jobs", "jobs", "clinic_jobs", "agent_jobs", "doctor_jobs"
    ]
    assert module_candidates("clinic_jobs") == ["clinic_jobs", "jobs", "agent_jobs", "doctor_jobs"]


@pytest.mark.parametrize("requested", ["jobs", "admin_jobs", "clinic_jobs", "doctor_jobs", "agent_jobs"])
@pytest.mark.parametrize("stored", ["jobs", "clinic_jobs", "doctor_jobs", "agent_jobs", "admin_jobs"])
def test_any_prefix_form_resolves(requested, stored):
    matrix = PermissionMatrix.from_document([_grant(stored, read=True)])
    assert is_allowed(matrix, requested, "read") is True
    assert is_allowed(matrix, requested, "delete") is False


def test_direct_lookup_follows_candidate_order():
    matrix = PermissionMatrix.from_document([
        _grant("doctor_jobs", read=True),
        _grant("clinic_jobs", create=True),
    ])
    # clinic_ comes before doctor_ among the candidates of "jobs"
    assert resolve_module(matrix, "jobs").module == "clinic_jobs"
    # an exact match always wins
    assert resolve_module(matrix, "doctor_jobs").module == "doctor_jobs"


def test_fallback_scan_matches_admin_prefixed_grant():
    matrix = PermissionMatrix.from_document([_grant("admin_blogs", export=True)])
    assert resolve_module(matrix, "clinic_blogs").module == "admin_blogs"


def test_unresolved_module_raises_not_found():
    with pytest.raises(ModuleNotFound) as excinfo:
        resolve_module(PermissionMatrix(), "clinic_jobs")
    assert "jobs" in excinfo.value.candidates


# Sub-module name matching

def test_find_by_name_tiers():
    names = ["Job Posting", "job posting", " See All Jobs "]
    assert find_by_name(names, "job posting", str) == "job posting"
    assert find_by_name(names, "JOB POSTING", str) == "Job Posting"
    assert find_by_name(names, "see all jobs", str) == " See All Jobs "
    assert find_by_name(names, "Applicants", str) is None


def test_sub_module_lookup_ignores_case_and_whitespace(jobs_matrix):
    assert is_allowed(jobs_matrix, "clinic_jobs", "read", "job posting") is True
    assert is_allowed(jobs_matrix, "clinic_jobs", "read", "  Job Posting ") is True


# Deny by default

@pytest.mark.parametrize("module_key,action,sub_module", [
    ("blogs", "read", None),
    ("jobs", "publish", None),
    ("jobs", "", None),
    ("jobs", None, None),
    ("jobs", "read", "See Job Applicants"),
    ("", "read", None),
    (None, "read", None),
    ("jobs", "read", 42),
])
def test_deny_by_default(jobs_matrix, module_key, action, sub_module):
    assert is_allowed(jobs_matrix, module_key, action, sub_module) is False


@pytest.mark.parametrize("matrix", [None, [], [{"actions": {}}], "not a matrix", [{"module": ""}]])
def test_malformed_matrix_denies(matrix):
    assert is_allowed(matrix, "jobs", "read") is False


def test_accepts_persisted_shape(jobs_matrix):
    assert is_allowed(jobs_matrix.to_document(), "agent_jobs", "create") is True


# Aggregate flag

def test_all_grants_every_action():
    matrix = PermissionMatrix.from_document([
        {"module": "jobs", "actions": ActionSet.granting_all().model_dump()}
    ])
    for action in Action:
        assert is_allowed(matrix, "jobs", action) is True


def test_stored_all_without_individual_flags_does_not_grant():
    matrix = PermissionMatrix.from_document([_grant("jobs", all=True, read=True)])
    assert is_allowed(matrix, "jobs", "read") is True
    assert is_allowed(matrix, "jobs", "delete") is False
    assert is_allowed(matrix, "jobs", "all") is False


def test_all_query_needs_every_individual_flag():
    flags = {a.value: True for a in INDIVIDUAL_ACTIONS}
    matrix = PermissionMatrix.from_document([_grant("jobs", **flags)])
    assert is_allowed(matrix, "jobs", "all") is True


# Grant ceiling

def test_can_grant_only_held_actions(jobs_matrix):
    assert can_grant(jobs_matrix, "jobs", "create") is True
    assert can_grant(jobs_matrix, "jobs", "delete") is False
    assert can_grant(jobs_matrix, "jobs", "read", "Job Posting") is True
    assert can_grant(jobs_matrix, "blogs", "read") is False


def test_ungrantable_actions_lists_exceeding_flags(jobs_matrix):
    requested = PermissionMatrix.from_document([
        {
            "module": "jobs",
            "actions": {"create": True, "delete": True},
            "subModules": [{"name": "Job Posting", "actions": {"read": True, "update": True}}],
        },
        _grant("blogs", read=True),
    ])
    assert ungrantable_actions(requested, jobs_matrix) == [
        "jobs:delete",
        "jobs/Job Posting:update",
        "blogs:read",
    ]


def test_ungrantable_actions_empty_within_ceiling(jobs_matrix):
    assert ungrantable_actions(jobs_matrix, jobs_matrix) == []
