"""
Canonical role and permission names.

Every name is normalized the same way on the write path (upserts, mutations)
and on the read path (checks, lookups):

    "Post Update"   -> "post.update"
    "post-update"   -> "post.update"
    "POST.view_any" -> "post.view_any"

The separator is ``.``; underscores are part of a word (``view_any``).
"""
import importlib
import re
from enum import Enum
from typing import Union

from rbac.features.permissions.exceptions import InvalidNameError, InvalidRoleError

SEPARATOR = "."

# Fallback group for permission names without a resource prefix
OTHER_RESOURCE = "other"

_SEPARATOR_RUN = re.compile(r"[\s\-]+")
_VALID_CHARS = re.compile(r"^[a-z0-9_.]+$")
# Dot separated words, no empty segments
_VALID_NAME = re.compile(r"^[a-z0-9_]+(\.[a-z0-9_]+)*$")

# A role given either as its canonical string or as a member of the role enum
RoleRef = Union[str, Enum]


def normalize_name(value: str) -> str:
    """
    Map a free-form role or permission string to its canonical key.

    Raises:
        InvalidNameError: for empty names, names with characters outside [a-z0-9_.]
            or names with an empty segment ("post.", "post..update")
    """
    normalized = _SEPARATOR_RUN.sub(SEPARATOR, str(value).strip().lower())

    if not normalized:
        raise InvalidNameError("Role and permission names cannot be empty.")

    if not _VALID_CHARS.match(normalized):
        raise InvalidNameError(
            f"Name '{normalized}' contains invalid characters. "
            "Only lowercase letters, numbers, underscores, and dots are allowed."
        )

    if not _VALID_NAME.match(normalized):
        raise InvalidNameError(f"Name '{normalized}' has an empty segment around a dot.")

    return normalized


def normalize_names(values) -> list[str]:
    """Normalize a batch of names, dropping duplicates but keeping order."""
    return list(dict.fromkeys(normalize_name(value) for value in values))


def split_permission_name(name: str) -> tuple[str, str]:
    """Split ``resource.action`` into its parts."""
    resource, separator, action = name.partition(SEPARATOR)
    if not separator or not resource or not action:
        return OTHER_RESOURCE, name
    return resource, action


def resolve_role_name(role: RoleRef, role_enum: type[Enum] | None = None) -> str:
    """
    Convert a role reference to its canonical name.

    Enum members contribute their value. When ``role_enum`` is given, the role
    must belong to it.
    """
    if isinstance(role, Enum):
        if role_enum is not None and not isinstance(role, role_enum):
            raise InvalidRoleError(f"The role '{role!r}' is not a member of the {role_enum.__name__} enum.")
        return normalize_name(str(role.value))

    name = normalize_name(role)
    if role_enum is not None and name not in enum_role_names(role_enum):
        raise InvalidRoleError(f"The role '{role}' is not valid for the {role_enum.__name__} enum.")
    return name


def enum_role_names(role_enum: type[Enum]) -> frozenset[str]:
    return frozenset(normalize_name(str(member.value)) for member in role_enum)


def import_enum(path: str) -> type[Enum]:
    """
    Load an enum class from ``package.module:ClassName``.

    Raises:
        InvalidRoleError: if the path does not point at an Enum subclass
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise InvalidRoleError(f"Role enum path '{path}' must look like 'package.module:ClassName'.")

    try:
        target = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as e:
        raise InvalidRoleError(f"Role enum '{path}' not found: {e}") from e

    if not isinstance(target, type) or not issubclass(target, Enum):
        raise InvalidRoleError(f"'{path}' is not an Enum class.")
    return target
