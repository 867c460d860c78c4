"""
Errors raised by the permission matrix, editor and resolution engine.

Edit-time errors (InvalidAction, UnknownModule, UnknownSubModule) are returned
to the caller. Check-time misses (ModuleNotFound, SubModuleNotFound) are
absorbed by ``is_allowed`` and turned into a deny.
"""
from typing import Optional


class PermissionMatrixError(Exception):
    """Base class for every permission matrix error."""


class InvalidAction(PermissionMatrixError, ValueError):
    """Action name outside the fixed set of eight."""

    def __init__(self, action: object):
        self.action = action
        super().__init__(f"Invalid action: {action!r}")


class UnknownModule(PermissionMatrixError, LookupError):
    """Module key not declared in the module catalog."""

    def __init__(self, module_key: str):
        self.module_key = module_key
        super().__init__(f"Module {module_key!r} is not in the module catalog")


class UnknownSubModule(PermissionMatrixError, LookupError):
    """Sub-module name not declared in the catalog entry of its module."""

    def __init__(self, module_key: str, sub_module_name: str):
        self.module_key = module_key
        self.sub_module_name = sub_module_name
        super().__init__(
            f"Submodule {sub_module_name!r} is not declared for module {module_key!r}"
        )


class DuplicateModule(PermissionMatrixError, ValueError):
    """The same module key appears on more than one grant."""

    def __init__(self, module_key: str):
        self.module_key = module_key
        super().__init__(f"Module {module_key!r} appears more than once")


class ModuleNotFound(PermissionMatrixError, LookupError):
    """No module grant in the matrix matches the requested key."""

    def __init__(self, module_key: str, candidates: Optional[list[str]] = None):
        self.module_key = module_key
        self.candidates = candidates or []
        super().__init__(f"Module {module_key!r} not found in permissions")


class SubModuleNotFound(PermissionMatrixError, LookupError):
    """The resolved module grant has no sub-module with the requested name."""

    def __init__(self, module_key: str, sub_module_name: str):
        self.module_key = module_key
        self.sub_module_name = sub_module_name
        super().__init__(f"Submodule {sub_module_name!r} not found in module {module_key!r}")


class InconsistentMatrix(PermissionMatrixError):
    """An action set has ``all`` set while some individual flag is off."""

    def __init__(self, location: str):
        self.location = location
        super().__init__(f"Inconsistent 'all' flag at {location}")


class StaleDocument(PermissionMatrixError):
    """A save was based on an older version of the stored document."""

    def __init__(self, expected_version: int, current_version: int):
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(
            f"Permission document changed since it was loaded "
            f"(expected version {expected_version}, current {current_version})"
        )
