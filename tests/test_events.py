import pytest

from rbac.features.permissions.events import (
    AccessRevoked,
    MutationKind,
    MutationResult,
    PermissionAdded,
    PermissionsSynced,
    RoleAdded,
    RolePermissionsSynced,
    RolesSynced,
    event_for,
)


def test_role_added_event():
    result = MutationResult(
        kind=MutationKind.ROLE_ADDED,
        subject_id="u1",
        applied=("admin",),
        attached=("admin",),
        absorbed=("post.update",),
    )

    event = event_for(result)

    assert event == RoleAdded(principal_id="u1", role="admin", absorbed_permissions=("post.update",))
    assert event.name == "role_added"
    assert event.as_dict() == {"principal_id": "u1", "role": "admin", "absorbed_permissions": ["post.update"]}


def test_sync_events_carry_the_diff():
    result = MutationResult(
        kind=MutationKind.ROLES_SYNCED,
        subject_id="u1",
        applied=("admin",),
        previous=("editor",),
        attached=("admin",),
        detached=("editor",),
    )

    event = event_for(result)

    assert isinstance(event, RolesSynced)
    assert event.synced == ("admin",)
    assert event.previous == ("editor",)
    assert event.as_dict()["detached"] == ["editor"]


@pytest.mark.parametrize(
    "kind, event_type",
    [
        (MutationKind.PERMISSION_ADDED, PermissionAdded),
        (MutationKind.PERMISSIONS_SYNCED, PermissionsSynced),
        (MutationKind.ROLE_PERMISSIONS_SYNCED, RolePermissionsSynced),
        (MutationKind.ACCESS_REVOKED, AccessRevoked),
    ],
)
def test_event_for_every_kind(kind, event_type):
    assert isinstance(event_for(MutationResult(kind=kind, subject_id="x", applied=("a",))), event_type)


def test_changed():
    assert not MutationResult(kind=MutationKind.PERMISSIONS_SYNCED, subject_id="u1", applied=("a",)).changed
    assert MutationResult(kind=MutationKind.ACCESS_REVOKED, subject_id="u1", detached_permissions=("a",)).changed
