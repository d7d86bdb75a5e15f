from typing import Optional

import pytest

from apiforge.app import App
from apiforge.errors import RegistryError
from apiforge.middleware import MiddlewareRegistry, validate_context_key, validate_strict_middleware


class Account:
    pass


def auth(request, next):
    return next(request)


def audit(request, next):
    return next(request)


def stray(request, next):
    return next(request)


def handler(ctx) -> None:
    pass


def test_use_keeps_declaration_order():
    reg = MiddlewareRegistry()
    reg.use(audit)
    reg.use(auth)
    assert [m.name for m in reg.middlewares()] == ["audit", "auth"]
    assert reg.is_declared(__name__, "auth")
    assert not reg.is_declared(__name__, "stray")


def test_provided_keys_are_sorted_with_type_names():
    reg = MiddlewareRegistry()
    reg.provide("user", Account)
    reg.provide("request_id", str)
    reg.provide("trace", Optional[str])
    assert [(k.key, k.type) for k in reg.provided_keys()] == [
        ("request_id", "str"),
        ("trace", "str | None"),
        ("user", f"{__name__}.Account"),
    ]


def test_duplicate_context_keys():
    reg = MiddlewareRegistry()
    reg.provide("user", Account)
    with pytest.raises(RegistryError) as same:
        reg.provide("user", Account)
    assert same.value.code == "duplicate_context_key"

    with pytest.raises(RegistryError) as mismatch:
        reg.provide("user", str)
    assert mismatch.value.code == "duplicate_context_key_type_mismatch"


@pytest.mark.parametrize("key", ["", "_user", "user_", "user__id", "userId", "123user", "user-id"])
def test_invalid_context_keys(key):
    with pytest.raises(RegistryError) as exc:
        validate_context_key(key)
    assert exc.value.code == "invalid_context_key"


def test_describe_collects_metadata():
    reg = MiddlewareRegistry()
    reg.use(auth)
    (
        reg.describe(auth)
        .require_header("Authorization")
        .require_cookie("session")
        .security("bearer")
        .may_return(401, "unauthorized")
    )
    reg.describe(auth).may_return(403, "forbidden")

    meta = reg.get_metadata(auth)
    assert meta.required_headers == ["Authorization"]
    assert meta.required_cookies == ["session"]
    assert meta.security_schemes == ["bearer"]
    assert [(s.status, s.description) for s in meta.may_return_statuses] == [
        (401, "unauthorized"),
        (403, "forbidden"),
    ]
    assert reg.get_metadata(audit) is None


def test_describe_requires_use_first():
    reg = MiddlewareRegistry()
    with pytest.raises(RegistryError) as exc:
        reg.describe(auth)
    assert exc.value.code == "describe_undeclared_middleware"


def _app_using(*mws):
    app = App()
    g = app.group()
    for mw in mws:
        g.use(mw)
    g.get("/x", handler)
    return app.endpoints()


def test_strict_middleware_passes_when_all_declared():
    reg = MiddlewareRegistry()
    reg.use(auth)
    reg.use(audit)
    validate_strict_middleware(_app_using(auth, audit), reg, configured=True)


def test_strict_middleware_without_registry():
    with pytest.raises(RegistryError) as exc:
        validate_strict_middleware(_app_using(auth), None, configured=False)
    assert exc.value.code == "middleware_used_without_registry"


def test_strict_middleware_reports_undeclared_sorted():
    reg = MiddlewareRegistry()
    reg.use(auth)
    with pytest.raises(RegistryError) as exc:
        validate_strict_middleware(_app_using(stray, auth, audit), reg, configured=True)
    assert exc.value.code == "undeclared_middleware"
    assert exc.value.message.index(f"{__name__}.audit") < exc.value.message.index(f"{__name__}.stray")


def test_no_middleware_needs_no_registry():
    app = App()
    app.get("/x", handler)
    validate_strict_middleware(app.endpoints(), None, configured=False)
