"""Tests for environment value cleanup."""

import pytest

from config import clean_env_value, parse_id_list


@pytest.mark.parametrize("raw, expected", [
    (None, ""),
    ("  token  ", "token"),
    ('"token"', "token"),
    ("'token'", "token"),
    ('"token', "token"),
    ("token'", "token"),
    ('"', ""),
])
def test_clean_env_value(raw, expected):
    assert clean_env_value(raw) == expected


def test_parse_id_list():
    assert parse_id_list("1, 2,,3 ") == [1, 2, 3]
    assert parse_id_list("") == []
    assert parse_id_list(None) == []
