"""Role enums standing in for an integrating application's."""
from enum import Enum


class Roles(str, Enum):
    ADMIN = "admin"
    EDITOR = "editor"


class OtherRoles(str, Enum):
    ADMIN = "admin"


class NotAnEnum:
    pass


class BadRoles(str, Enum):
    ADMIN = "Admin!"
