"""Unit tests for the logging bootstrap."""

import logging

import pytest

from jindexer.log_setup import resolve_level


class TestResolveLevel:

    @pytest.mark.parametrize("name,expected", [
        ("debug", logging.DEBUG),
        ("INFO", logging.INFO),
        ("warn", logging.WARNING),
        ("error", logging.ERROR),
        ("fatal", logging.CRITICAL),
        (" Debug ", logging.DEBUG),
    ])
    def test_known_levels(self, name, expected):
        assert resolve_level(name) == expected

    @pytest.mark.parametrize("name", ["", "verbose", None])
    def test_unknown_defaults_to_info(self, name):
        assert resolve_level(name) == logging.INFO
