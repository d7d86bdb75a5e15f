import enum
import json
import sys
from pathlib import Path
from typing import Optional

import pytest
from pydantic import BaseModel

from apiforge.analysis.schema import collect_types
from apiforge.discovery.driver import EXIT_IMPORT, EXIT_OK, EXIT_VALIDATION, build_manifest, driver_main
from apiforge.domain.models import (
    Manifest,
    ManifestBindings,
    ManifestContextKey,
    ManifestEndpoint,
    ManifestFieldBinding,
    ManifestMiddleware,
    ManifestMiddlewareMetadata,
)
from apiforge.errors import EndpointValidationError, RegistryError

from conftest import _drop_modules, write_project


def sample_manifest() -> Manifest:
    return Manifest(
        endpoints=[
            ManifestEndpoint(
                method="GET",
                path="/pets/{id}",
                handler_pkg="app.api",
                handler_name="get_pet",
                shape="ctx_req_resp_err",
                req_type="app.models.GetPet",
                resp_type="app.models.Pet",
                middlewares=[ManifestMiddleware(pkg="app.mw", name="auth")],
                bindings=ManifestBindings(
                    path_bindings=[ManifestFieldBinding(field_name="id", tag_value="id", type_kind="str")],
                ),
            ),
            ManifestEndpoint(
                method="GET",
                path="/health",
                handler_pkg="app.api",
                handler_name="health",
                shape="ctx_err",
            ),
        ],
        middlewares=[ManifestMiddleware(pkg="app.mw", name="auth")],
        context_keys=[ManifestContextKey(key="user", type="app.models.User")],
        middleware_metadata={
            "app.mw.auth": ManifestMiddlewareMetadata(required_headers=["Authorization"]),
        },
    )


def test_round_trip_is_deep_equal():
    m = sample_manifest()
    assert Manifest.from_json(m.to_json()) == m


def test_encoding_is_byte_identical():
    a = sample_manifest().to_json()
    b = sample_manifest().to_json()
    assert a == b
    assert a.endswith("}\n")


def test_json_drops_absent_optionals_and_sorts_keys():
    payload = json.loads(sample_manifest().to_json())
    health = payload["endpoints"][1]
    assert "req_type" not in health
    assert "bindings" not in health
    assert list(payload) == sorted(payload)
    assert payload["middleware_metadata"]["app.mw.auth"]["required_headers"] == ["Authorization"]
    binding = payload["endpoints"][0]["bindings"]["path_bindings"][0]
    assert binding == {
        "field_name": "id",
        "tag_value": "id",
        "type_kind": "str",
        "is_pointer": False,
        "is_slice": False,
    }


def test_build_manifest_for_petstore(petstore: Path):
    m = build_manifest("petstore.api", "petstore.middleware")

    assert [e.pattern for e in m.endpoints] == [
        "GET /health",
        "GET /pets",
        "GET /pets/{id}",
        "POST /pets",
        "GET /me",
    ]
    by_pattern = {e.pattern: e for e in m.endpoints}

    health = by_pattern["GET /health"]
    assert health.shape == "ctx_err"
    assert health.middlewares == []
    assert health.bindings is None

    get_pet = by_pattern["GET /pets/{id}"]
    assert get_pet.shape == "ctx_req_resp_err"
    assert get_pet.req_type == "petstore.models.GetPetRequest"
    assert get_pet.resp_type == "petstore.models.Pet"
    assert [b.tag_value for b in get_pet.bindings.path_bindings] == ["id"]
    verbose = get_pet.bindings.query_bindings[0]
    assert (verbose.type_kind, verbose.is_pointer) == ("bool", True)

    create = by_pattern["POST /pets"]
    assert create.bindings.has_json_body
    assert [b.tag_value for b in create.bindings.header_bindings] == ["X-Trace"]

    me = by_pattern["GET /me"]
    assert [mw.name for mw in me.middlewares] == ["request_id", "auth"]
    assert by_pattern["GET /pets"].middlewares == [ManifestMiddleware(pkg="petstore.middleware", name="request_id")]

    assert [mw.name for mw in m.middlewares] == ["request_id", "auth"]
    assert [(k.key, k.type) for k in m.context_keys] == [
        ("request_id", "str"),
        ("user", "petstore.models.User"),
    ]
    auth_meta = m.middleware_metadata["petstore.middleware.auth"]
    assert auth_meta.required_headers == ["Authorization"]
    assert auth_meta.security_schemes == ["bearer"]
    assert auth_meta.may_return_statuses[0].status == 401

    assert m.endpoint_docs["petstore.api.get_pet"].summary == "Fetch one pet."
    assert "404" in m.endpoint_docs["petstore.api.get_pet"].description
    assert "petstore.api.list_pets" not in m.endpoint_docs

    type_ids = [t.id for t in m.types]
    assert type_ids == sorted(type_ids)
    pet = next(t for t in m.types if t.id == "petstore.models.Pet")
    assert pet.underlying_kind == "model"
    assert pet.doc == "A pet in the store."
    assert [(f.name, f.type_id, f.required) for f in pet.fields] == [
        ("id", "str", True),
        ("name", "str", True),
        ("tags", "list[str]", False),
    ]
    assert next(t for t in m.types if t.id == "list[petstore.models.Pet]").elem == "petstore.models.Pet"


def test_build_manifest_is_deterministic(petstore: Path):
    first = build_manifest("petstore.api", "petstore.middleware").to_json()
    second = build_manifest("petstore.api", "petstore.middleware").to_json()
    assert first == second


def test_middleware_without_registry_is_rejected(petstore: Path):
    with pytest.raises(RegistryError) as exc:
        build_manifest("petstore.api")
    assert exc.value.code == "middleware_used_without_registry"


@pytest.fixture
def badapi(tmp_path: Path, monkeypatch):
    root = write_project(
        tmp_path / "bad",
        {
            "badapi/__init__.py": "",
            "badapi/api.py": """
                from apiforge.app import App


                def no_context() -> None:
                    pass


                def register(app: App) -> None:
                    app.get("/broken", no_context)
                """,
            "badapi/lambdas.py": """
                from apiforge.app import App
                from apiforge.context import Context


                def register(app: App) -> None:
                    def local(ctx: Context) -> None:
                        pass

                    app.get("/local", local)
                """,
            "badapi/empty.py": "",
            "badapi/chatty.py": """
                from apiforge.app import App
                from apiforge.context import Context

                print("importing chatty")


                def ping(ctx: Context) -> None:
                    pass


                def register(app: App) -> None:
                    print("registering routes")
                    app.get("/ping", ping)
                """,
        },
    )
    monkeypatch.syspath_prepend(str(root))
    _drop_modules("badapi")
    yield root
    _drop_modules("badapi")


def test_invalid_handler_fails_with_endpoint_context(badapi: Path):
    with pytest.raises(EndpointValidationError) as exc:
        build_manifest("badapi.api")
    assert exc.value.code == "missing_context"
    assert str(exc.value).startswith("endpoint GET /broken: [missing_context]")


def test_nested_handler_is_not_addressable(badapi: Path):
    with pytest.raises(EndpointValidationError) as exc:
        build_manifest("badapi.lambdas")
    assert exc.value.code == "handler_not_addressable"


def test_missing_register_function_is_an_import_error(badapi: Path):
    with pytest.raises(ImportError, match="register"):
        build_manifest("badapi.empty")


def _descriptor(tmp_path: Path, target: str, middleware, search_paths) -> str:
    path = tmp_path / "sandbox.json"
    path.write_text(
        json.dumps({"target": target, "middleware": middleware, "search_paths": search_paths}),
        encoding="utf-8",
    )
    return str(path)


def test_driver_main_prints_manifest(petstore: Path, tmp_path: Path, monkeypatch, capsys):
    monkeypatch.setattr(sys, "path", list(sys.path))
    desc = _descriptor(tmp_path, "petstore.api", "petstore.middleware", [str(petstore / "src")])

    assert driver_main(desc) == EXIT_OK
    out = capsys.readouterr().out
    assert Manifest.from_json(out) == build_manifest("petstore.api", "petstore.middleware")


def test_driver_main_exit_codes(badapi: Path, tmp_path: Path, monkeypatch, capsys):
    monkeypatch.setattr(sys, "path", list(sys.path))

    assert driver_main(_descriptor(tmp_path, "badapi.api", None, [str(badapi)])) == EXIT_VALIDATION
    assert "validation error: endpoint GET /broken: [missing_context]" in capsys.readouterr().err

    assert driver_main(_descriptor(tmp_path, "badapi.nope", None, [str(badapi)])) == EXIT_IMPORT
    assert capsys.readouterr().err.startswith("import error:")


def test_driver_main_keeps_target_output_off_stdout(badapi: Path, tmp_path: Path, monkeypatch, capsys):
    monkeypatch.setattr(sys, "path", list(sys.path))

    assert driver_main(_descriptor(tmp_path, "badapi.chatty", None, [str(badapi)])) == EXIT_OK
    captured = capsys.readouterr()
    assert [e.path for e in Manifest.from_json(captured.out).endpoints] == ["/ping"]
    assert "importing chatty" in captured.err
    assert "registering routes" in captured.err


class Color(enum.Enum):
    """Fur colour."""

    RED = "red"
    BLACK = "black"


class Tag(BaseModel):
    name: str


def test_collect_types_covers_every_kind_and_sorts_by_id():
    types = collect_types([Optional[Tag], dict[int, str], Color, complex, dict[str, int]])

    tag, color = f"{__name__}.Tag", f"{__name__}.Color"
    assert [t.id for t in types] == [
        "complex",
        "dict[int, str]",
        "dict[str, int]",
        "int",
        "str",
        color,
        tag,
        f"{tag} | None",
    ]
    by_id = {t.id: t for t in types}

    optional = by_id[f"{tag} | None"]
    assert (optional.underlying_kind, optional.nullable, optional.elem) == ("optional", True, tag)
    assert by_id[tag].underlying_kind == "model"

    int_keys = by_id["dict[int, str]"]
    assert (int_keys.underlying_kind, int_keys.key, int_keys.value) == ("dict", "int", "str")
    assert int_keys.warnings == ["non-string dict key type int not supported in JSON"]
    assert by_id["dict[str, int]"].warnings is None

    assert by_id[color].underlying_kind == "enum"
    assert by_id[color].doc == "Fur colour."

    assert by_id["complex"].underlying_kind == "unknown"
    assert by_id["complex"].warnings == ["unsupported type: complex"]
