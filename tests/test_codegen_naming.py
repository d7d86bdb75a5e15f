import pytest

from apiforge.codegen.naming import (
    accessor_names,
    context_key_to_camel_case,
    context_key_to_snake,
    detect_context_key_collisions,
    route_slug,
    unique_slugs,
)
from apiforge.errors import GeneratorError


@pytest.mark.parametrize(
    "key,expected",
    [
        ("user", "User"),
        ("request_id", "RequestID"),
        ("user_auth_token", "UserAuthToken"),
        ("session_id", "SessionID"),
        ("redirect_url", "RedirectURL"),
        ("http_method", "HTTPMethod"),
        ("client_ip", "ClientIP"),
        ("api_key", "APIKey"),
        ("html_content", "HTMLContent"),
        ("json_data", "JSONData"),
        ("xml_parser", "XMLParser"),
        ("sql_query", "SQLQuery"),
        ("retry_count", "RetryCount"),
        ("id", "ID"),
        ("url", "URL"),
        ("user_id_list", "UserIDList"),
        ("trace_uuid", "TraceUUID"),
        ("v2_token", "V2Token"),
    ],
)
def test_context_key_to_camel_case(key, expected):
    assert context_key_to_camel_case(key) == expected


@pytest.mark.parametrize("key", ["", "_user", "user_", "user__id", "userId", "123user", "user-id"])
def test_invalid_keys_are_generator_errors(key):
    with pytest.raises(GeneratorError) as exc:
        context_key_to_camel_case(key)
    assert exc.value.code == "invalid_context_key"


def test_snake_names_escape_keywords():
    assert context_key_to_snake("request_id") == "request_id"
    assert context_key_to_snake("class") == "class_"
    assert accessor_names("class") == ("with_class", "class_", "must_class")
    assert accessor_names("request_id") == ("with_request_id", "request_id", "must_request_id")


def test_no_collisions_for_distinct_keys():
    detect_context_key_collisions(["user", "user_id", "user_name", "request_id"])


def test_keys_rendering_the_same_token_collide():
    with pytest.raises(GeneratorError) as exc:
        detect_context_key_collisions(["api_key", "a_p_i_key"])
    assert exc.value.code == "context_key_collision"
    assert "APIKey" in exc.value.message


def test_accessor_shadowing_another_key_collides():
    with pytest.raises(GeneratorError) as exc:
        detect_context_key_collisions(["user", "with_user"])
    assert exc.value.code == "context_key_collision"
    assert "with_user()" in exc.value.message


def test_route_slugs():
    assert route_slug("GET", "/users/{id}") == "get_users_by_id"
    assert route_slug("GET", "/") == "get_root"
    assert route_slug("DELETE", "/files/{path...}") == "delete_files_by_path"
    assert route_slug("POST", "/v1/pet-store/items") == "post_v1_pet_store_items"


def test_unique_slugs_add_counters_on_clash():
    assert unique_slugs(
        [
            ("GET", "/pet-store"),
            ("GET", "/pet_store"),
            ("GET", "/pet.store"),
            ("GET", "/pet_store_2"),
        ]
    ) == ["get_pet_store", "get_pet_store_2", "get_pet_store_3", "get_pet_store_2_2"]
