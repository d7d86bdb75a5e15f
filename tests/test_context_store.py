from typing import Optional

import pytest

from apiforge.context import Cap, Context, ContextKey, get_typed, must_typed, put
from apiforge.errors import RegistryError
from apiforge.middleware import MiddlewareRegistry


class Account:
    def __init__(self, name: str) -> None:
        self.name = name


def test_put_never_mutates_the_input():
    base = Context()
    child = put(base, "request_id", "abc")
    assert "request_id" not in base
    assert len(base) == 0
    assert get_typed(child, "request_id", str) == ("abc", True)


def test_branches_do_not_see_each_other():
    root = put(Context(), "shared", 1)
    left = put(root, "side", "left")
    right = put(root, "side", "right")
    assert must_typed(left, "side", str) == "left"
    assert must_typed(right, "side", str) == "right"
    assert "side" not in root
    assert left.keys() == ["shared", "side"]


def test_get_typed_reports_missing_and_mismatched():
    ctx = put(Context(), "count", 3)
    assert get_typed(ctx, "absent", int) == (None, False)
    assert get_typed(ctx, "count", str) == (None, False)
    assert get_typed(ctx, "count", int) == (3, True)


def test_optional_and_generic_types_are_checked():
    ctx = put(Context(), "user", Account("a"))
    assert get_typed(ctx, "user", Optional[Account])[1]
    assert not get_typed(ctx, "user", list[str])[1]


def test_must_typed_raises_lookup_error():
    with pytest.raises(LookupError, match="'user'"):
        must_typed(Context(), "user", Account)


def test_context_key_provides_a_cap_through_the_registry():
    reg = MiddlewareRegistry()
    cap = ContextKey("user", Account).provide(reg)
    assert cap == Cap(key="user", typ=Account)
    assert [k.key for k in reg.provided_keys()] == ["user"]

    with pytest.raises(RegistryError):
        ContextKey("user", Account).provide(reg)
    with pytest.raises(RegistryError):
        ContextKey("Bad-Key", str).provide(reg)


def test_cap_and_plain_functions_share_storage():
    cap = Cap(key="user", typ=Account)
    alice = Account("alice")

    via_cap = cap.put(Context(), alice)
    assert must_typed(via_cap, "user", Account) is alice

    via_put = put(Context(), "user", Account("bob"))
    assert cap.must(via_put).name == "bob"
    assert cap.get(Context()) == (None, False)
    with pytest.raises(LookupError):
        cap.must(put(Context(), "user", "not an account"))
