"""
Role and permission catalogs for the batch loader.

Roles come from the integrating application's role enum; permissions are
generated as ``<resource>.<action>`` for every mapped model and every
``ModelAction``.
"""
from collections.abc import Iterable
from enum import Enum
from typing import NamedTuple

from sqlalchemy.orm import DeclarativeBase


class CatalogEntry(NamedTuple):
    name: str
    display_name: str | None = None


class ModelAction(str, Enum):
    """Standard actions that can be performed on a model."""

    VIEW_ANY = "view_any"
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RESTORE = "restore"
    FORCE_DELETE = "force_delete"

    @classmethod
    def values(cls) -> list[str]:
        return [action.value for action in cls]


def default_display_name(name: str) -> str:
    """Humanize a name: post.view_any -> Post View Any."""
    return " ".join(word.capitalize() for word in name.replace(".", " ").replace("_", " ").split())


def role_entries(role_enum: type[Enum]) -> list[CatalogEntry]:
    """One entry per enum member: the lowercased value, displayed as the member name."""
    return [CatalogEntry(str(member.value).lower(), member.name.replace("_", " ").title()) for member in role_enum]


def permission_entries(resources: Iterable[str], actions: Iterable[str] | None = None) -> list[CatalogEntry]:
    """Cross every resource with every action."""
    actions = list(actions) if actions is not None else ModelAction.values()
    entries = []
    for resource in dict.fromkeys(resource.lower() for resource in resources):
        for action in actions:
            action = str(getattr(action, "value", action))
            entries.append(CatalogEntry(f"{resource}.{action}", f"{resource.title()} {action.replace('_', ' ').title()}"))
    return entries


def discover_resources(base: type[DeclarativeBase], excluded: Iterable[str] = ()) -> list[str]:
    """Names of the mapped classes of ``base``, minus ``excluded``."""
    skipped = {name.lower() for name in excluded}
    names = {mapper.class_.__name__.lower() for mapper in base.registry.mappers}
    return sorted(names - skipped)
