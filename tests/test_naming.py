import pytest

from rbac.features.permissions.exceptions import InvalidNameError, InvalidRoleError
from rbac.features.permissions.naming import (
    import_enum,
    normalize_name,
    normalize_names,
    resolve_role_name,
    split_permission_name,
)
from sample_roles import OtherRoles, Roles


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Post Update", "post.update"),
        ("post-update", "post.update"),
        ("  POST.view_any  ", "post.view_any"),
        ("post - \t update", "post.update"),
        ("admin", "admin"),
    ],
)
def test_normalize_name(raw, expected):
    assert normalize_name(raw) == expected


def test_normalize_name_is_idempotent():
    once = normalize_name("Invoice Force-Delete")
    assert normalize_name(once) == once == "invoice.force.delete"


@pytest.mark.parametrize("raw", ["", "   ", "post:update", "post/update", "pöst.update"])
def test_normalize_name_rejects_invalid(raw):
    with pytest.raises(InvalidNameError):
        normalize_name(raw)


@pytest.mark.parametrize("raw", [".", "post.", ".update", "post..update", "post -"])
def test_normalize_name_rejects_empty_segments(raw):
    with pytest.raises(InvalidNameError, match="empty segment"):
        normalize_name(raw)


def test_invalid_name_is_a_value_error():
    with pytest.raises(ValueError):
        normalize_name("")


def test_normalize_names_dedupes_in_order():
    assert normalize_names(["Post Update", "user.view", "post-update"]) == ["post.update", "user.view"]


def test_split_permission_name():
    assert split_permission_name("post.update") == ("post", "update")
    assert split_permission_name("post.view_any") == ("post", "view_any")
    assert split_permission_name("dashboard") == ("other", "dashboard")


def test_resolve_role_name_without_enum():
    assert resolve_role_name("Admin") == "admin"
    assert resolve_role_name(Roles.EDITOR) == "editor"


def test_resolve_role_name_with_enum():
    assert resolve_role_name("ADMIN", Roles) == "admin"
    assert resolve_role_name(Roles.ADMIN, Roles) == "admin"

    with pytest.raises(InvalidRoleError):
        resolve_role_name("ghost", Roles)

    with pytest.raises(InvalidRoleError):
        resolve_role_name(OtherRoles.ADMIN, Roles)


def test_import_enum():
    assert import_enum("sample_roles:Roles") is Roles

    for path in ["sample_roles", "sample_roles:Missing", "missing_module:Roles", "sample_roles:NotAnEnum"]:
        with pytest.raises(InvalidRoleError):
            import_enum(path)
