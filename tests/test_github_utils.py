"""Tests for gitpulse.core.github URL and identifier helpers."""

from __future__ import annotations

import pytest

from gitpulse.core.github import (
    extract_remote_id,
    graphql_url,
    rest_base_url,
    split_full_name,
)


class TestSplitFullName:
    def test_owner_and_name(self):
        assert split_full_name("acme/widgets") == ("acme", "widgets")

    def test_surrounding_slashes_ignored(self):
        assert split_full_name("/acme/widgets/") == ("acme", "widgets")

    @pytest.mark.parametrize("bad", ["acme", "acme/", "/widgets", "a/b/c", ""])
    def test_rejects_malformed(self, bad):
        with pytest.raises(ValueError):
            split_full_name(bad)


class TestEndpoints:
    def test_public_rest(self):
        assert rest_base_url(None) == "https://api.github.com"
        assert rest_base_url("https://api.github.com/") == "https://api.github.com"

    def test_self_hosted_rest(self):
        assert rest_base_url("https://ghe.example.com") == "https://ghe.example.com/api/v3"
        assert rest_base_url("https://ghe.example.com/api") == "https://ghe.example.com/api/v3"
        assert (
            rest_base_url("https://ghe.example.com/api/v3/") == "https://ghe.example.com/api/v3"
        )

    def test_public_graphql(self):
        assert graphql_url(None) == "https://api.github.com/graphql"
        assert graphql_url("https://api.github.com") == "https://api.github.com/graphql"

    def test_self_hosted_graphql(self):
        assert graphql_url("https://ghe.example.com/api/v3") == "https://ghe.example.com/api/graphql"
        assert graphql_url("https://ghe.example.com") == "https://ghe.example.com/api/graphql"


class TestExtractRemoteId:
    def test_int_passthrough(self):
        assert extract_remote_id(42) == 42

    def test_digit_string(self):
        assert extract_remote_id("1234") == 1234

    def test_legacy_node_id(self):
        # base64("04:User1")
        assert extract_remote_id("MDQ6VXNlcjE=") == 1

    def test_padding_optional(self):
        assert extract_remote_id("MDQ6VXNlcjE") == 1

    @pytest.mark.parametrize("value", [None, "", "not-base64!!"])
    def test_no_numeric_id(self, value):
        assert extract_remote_id(value) is None
