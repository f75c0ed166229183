"""Unit tests for password hashing and access tokens."""

import pytest

from reppy.auth import (
    create_access_token, decode_access_token, generate_username, hash_password,
    parse_bearer, verify_password,
)


@pytest.mark.unit
def test_password_hash_round_trip():
    stored = hash_password("secret123")
    assert stored != "secret123"
    assert verify_password("secret123", stored)
    assert not verify_password("secret124", stored)


@pytest.mark.unit
def test_password_hashes_are_salted():
    assert hash_password("secret123") != hash_password("secret123")


@pytest.mark.unit
def test_access_token_carries_user_id():
    token = create_access_token("user-1")
    assert decode_access_token(token) == "user-1"
    assert decode_access_token(token + "x") is None


@pytest.mark.unit
def test_parse_bearer():
    assert parse_bearer("Bearer abc") == "abc"
    assert parse_bearer("bearer  abc ") == "abc"
    assert parse_bearer("Basic abc") is None
    assert parse_bearer(None) is None


@pytest.mark.unit
def test_generated_username():
    username = generate_username("Jane.Doe+gym@example.com")
    assert username.startswith("janedoegym")
    assert username[len("janedoegym"):].isdigit()
