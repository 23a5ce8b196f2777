import pytest

from registry_core.auth.scopes import (
    authorize,
    can_publish_any,
    is_valid_scope,
    publish_capability,
    require,
    validate_scopes,
)
from registry_core.errors import ForbiddenError, InvalidError

CAPABILITIES = [
    "admin",
    "publish:all",
    "publish:pkg:foo",
    "publish:pkg:bar",
    "read:all",
    "read:packages",
]


@pytest.mark.parametrize("capability", CAPABILITIES)
def test_admin_grants_everything(capability):
    assert authorize({"admin"}, capability)


@pytest.mark.parametrize("capability", CAPABILITIES)
def test_empty_scope_set_grants_nothing(capability):
    assert not authorize(set(), capability)


@pytest.mark.parametrize(
    "scopes, capability, expected",
    [
        ({"publish:all"}, "publish:pkg:foo", True),
        ({"publish:all"}, "publish:pkg:anything_else", True),
        ({"publish:all"}, "read:all", False),
        ({"publish:all"}, "admin", False),
        ({"publish:pkg:foo"}, "publish:pkg:foo", True),
        ({"publish:pkg:foo"}, "publish:pkg:bar", False),
        ({"publish:pkg:foo"}, "publish:pkg:foobar", False),
        ({"publish:pkg:foo"}, "publish:all", False),
        ({"read:all"}, "read:packages", True),
        ({"read:all"}, "publish:pkg:foo", False),
        ({"read:all"}, "admin", False),
        ({"read:packages"}, "read:all", False),
    ],
)
def test_scope_matrix(scopes, capability, expected):
    assert authorize(scopes, capability) is expected


def test_require_raises_forbidden():
    require({"publish:pkg:foo"}, publish_capability("foo"))
    with pytest.raises(ForbiddenError):
        require({"publish:pkg:foo"}, publish_capability("bar"))


def test_can_publish_any():
    assert can_publish_any({"publish:pkg:foo"})
    assert can_publish_any({"publish:all"})
    assert can_publish_any({"admin"})
    assert not can_publish_any({"read:all"})
    assert not can_publish_any(set())


def test_scope_validation():
    assert is_valid_scope("publish:pkg:foo_bar")
    assert not is_valid_scope("publish:pkg:Foo")
    assert not is_valid_scope("write:all")
    assert validate_scopes([" admin ", "read:all"]) == frozenset({"admin", "read:all"})
    with pytest.raises(InvalidError):
        validate_scopes([])
    with pytest.raises(InvalidError):
        validate_scopes(["read:all", "superuser"])
