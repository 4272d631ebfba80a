import pytest

from chatlink.authz import (
    Decision,
    PermissionGrant,
    PermissionSet,
    Requirement,
    authorize,
    find_matching_grant,
    function_resource,
    notification_resource,
    require,
)
from chatlink.errors import ForbiddenError, UnauthenticatedError


def grants(*pairs):
    return PermissionSet(allow=[PermissionGrant(action=a, resource=r) for a, r in pairs])


def test_exact_grant_allows():
    assert authorize("function:execute", "/a/b/", grants(("function:execute", "/a/b/"))) == Decision.ALLOW


def test_grant_on_parent_resource_allows():
    perms = grants(("function:delete", "/account/1/"))
    assert authorize("function:delete", "/account/1/subscription/2/", perms) == Decision.ALLOW


def test_resource_prefix_is_not_segment_aware():
    perms = grants(("function:execute", "/a/b"))
    assert authorize("function:execute", "/a/bc/", perms) == Decision.ALLOW


def test_unrelated_resource_denies():
    perms = grants(("function:execute", "/a/b/"))
    assert authorize("function:execute", "/a/c/", perms) == Decision.DENY


@pytest.mark.parametrize(
    "granted,required,expected",
    [
        ("x:y", "x:y", Decision.ALLOW),
        ("x:*", "x:y", Decision.ALLOW),
        ("*", "x:y", Decision.ALLOW),
        ("x:y:*", "x:y:z", Decision.ALLOW),
        ("x:y", "x:z", Decision.DENY),
        ("x:y", "x:y:z", Decision.DENY),
        ("x:y:z", "x:y", Decision.ALLOW),
        ("storage:*", "function:execute", Decision.DENY),
    ],
)
def test_action_tokens(granted, required, expected):
    assert authorize(required, "/r/", grants((granted, "/r/"))) == expected


def test_first_matching_grant_wins():
    perms = grants(("storage:*", "/r/"), ("function:*", "/r/"), ("function:execute", "/r/"))
    grant = find_matching_grant("function:execute", "/r/x/", perms)
    assert grant == PermissionGrant("function:*", "/r/")


def test_empty_and_missing_permission_sets_deny():
    assert authorize("function:execute", "/r/", PermissionSet()) == Decision.DENY
    assert authorize("function:execute", "/r/", None) == Decision.DENY


def test_require_distinguishes_missing_from_insufficient():
    with pytest.raises(UnauthenticatedError):
        require("function:delete", "/r/", None)
    with pytest.raises(ForbiddenError):
        require("function:delete", "/r/", grants(("function:execute", "/r/")))
    assert require("function:delete", "/r/", grants(("function:*", "/"))).action == "function:*"


def test_requirement_derives_resource_per_request():
    req = Requirement("function:execute", notification_resource)
    perms = grants(("function:execute", notification_resource("a", "s", "b", "f", "vendor-1")))
    req.check(perms, "a", "s", "b", "f", "vendor-1")
    with pytest.raises(ForbiddenError):
        req.check(perms, "a", "s", "b", "f", "vendor-2")


def test_notification_resource_nests_under_function_resource():
    base = function_resource("a", "s", "b", "f")
    assert base == "/account/a/subscription/s/boundary/b/function/f/"
    assert notification_resource("a", "s", "b", "f", "u/1") == base + "operation/notification/u%2F1/"


def test_permission_set_from_dict():
    perms = PermissionSet.from_dict({"allow": [{"action": "function:*", "resource": "/r/"}]})
    assert perms.allow == [PermissionGrant("function:*", "/r/")]
    assert perms.to_dict() == {"allow": [{"action": "function:*", "resource": "/r/"}]}
