import sys
import textwrap
from pathlib import Path

import pytest


def write(p: Path, s: str) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(textwrap.dedent(s), encoding="utf-8")


PETSTORE_FILES = {
    "pyproject.toml": """
        [project]
        name = "petstore"
        version = "0.0.1"

        [tool.apiforge]
        package = "petstore.api"
        middleware_package = "petstore.middleware"
        """,
    "src/petstore/__init__.py": "",
    "src/petstore/models.py": """
        from typing import Annotated, Optional

        from pydantic import BaseModel

        from apiforge.binding import Body, Header, Path, Query


        class Pet(BaseModel):
            \"\"\"A pet in the store.\"\"\"

            id: str
            name: str
            tags: list[str] = []


        class User(BaseModel):
            name: str


        class GetPetRequest(BaseModel):
            id: Annotated[str, Path("id")]
            verbose: Annotated[Optional[bool], Query("verbose")] = None


        class ListPetsRequest(BaseModel):
            tag: Annotated[list[str], Query("tag")] = []
            limit: Annotated[Optional[int], Query("limit")] = None


        class CreatePetRequest(BaseModel):
            name: Annotated[str, Body("name")]
            tags: Annotated[list[str], Body("tags")] = []
            trace: Annotated[Optional[str], Header("X-Trace")] = None
        """,
    "src/petstore/middleware.py": """
        from apiforge import runtime
        from apiforge.context import ContextKey, put
        from apiforge.middleware import MiddlewareRegistry

        from petstore.models import User

        REQUEST_ID = ContextKey("request_id", str)
        CURRENT_USER = ContextKey("user", User)


        def request_id(request, next):
            rid = request.header("X-Request-ID") or "generated"
            return next(request.with_context(put(request.context, "request_id", rid)))


        def auth(request, next):
            if request.header("Authorization") != "Bearer secret":
                raise runtime.unauthorized("missing or invalid token")
            return next(request.with_context(put(request.context, "user", User(name="alice"))))


        def register_middleware(registry: MiddlewareRegistry) -> None:
            registry.use(request_id)
            registry.use(auth)
            REQUEST_ID.provide(registry)
            CURRENT_USER.provide(registry)
            (
                registry.describe(auth)
                .require_header("Authorization")
                .security("bearer")
                .may_return(401, "missing or invalid token")
            )
        """,
    "src/petstore/api.py": """
        from apiforge import runtime
        from apiforge.app import App
        from apiforge.context import Context, must_typed

        from petstore import middleware
        from petstore.models import CreatePetRequest, GetPetRequest, ListPetsRequest, Pet, User

        PETS = {
            "1": Pet(id="1", name="Rex", tags=["dog"]),
            "2": Pet(id="2", name="Tom", tags=["cat"]),
        }


        def health(ctx: Context) -> None:
            \"\"\"Liveness check.\"\"\"


        def list_pets(ctx: Context, req: ListPetsRequest) -> list[Pet]:
            pets = [p for p in PETS.values() if not req.tag or set(req.tag) & set(p.tags)]
            return pets[: req.limit] if req.limit is not None else pets


        def get_pet(ctx: Context, req: GetPetRequest) -> Pet:
            \"\"\"Fetch one pet.

            Responds 404 when the pet does not exist.
            \"\"\"
            pet = PETS.get(req.id)
            if pet is None:
                raise runtime.not_found(f"pet {req.id} not found")
            return pet


        def create_pet(ctx: Context, req: CreatePetRequest) -> Pet:
            return Pet(id=str(len(PETS) + 1), name=req.name, tags=req.tags)


        def whoami(ctx: Context) -> User:
            return must_typed(ctx, "user", User)


        def register(app: App) -> None:
            app.get("/health", health)
            with app.group() as api:
                api.use(middleware.request_id)
                api.get("/pets", list_pets)
                api.get("/pets/{id}", get_pet)
                api.post("/pets", create_pet)
                with api.group() as authed:
                    authed.use(middleware.auth)
                    authed.get("/me", whoami)
        """,
}


def write_project(root: Path, files: dict) -> Path:
    for rel, text in files.items():
        write(root / rel, text)
    return root


def _drop_modules(prefix: str) -> None:
    for name in list(sys.modules):
        if name == prefix or name.startswith(prefix + "."):
            del sys.modules[name]


@pytest.fixture
def petstore(tmp_path: Path, monkeypatch):
    """The petstore project on disk, importable in-process as ``petstore``."""
    root = write_project(tmp_path / "petstore", PETSTORE_FILES)
    monkeypatch.syspath_prepend(str(root / "src"))
    _drop_modules("petstore")
    yield root
    _drop_modules("petstore")
