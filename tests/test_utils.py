# tests/test_utils.py
import asyncio
import logging

import pytest

from spider import utils


def test_slugify():
    assert utils.slugify(" Hello, World! ") == "hello-world"
    assert utils.slugify("spider.books") == "spider.books"
    assert utils.slugify("A" * 500).startswith("a" * 80)
    assert utils.slugify("!!!") == "untitled"


def test_getenv_helpers(monkeypatch):
    monkeypatch.setenv("X_INT", "42")
    monkeypatch.setenv("X_FLOAT", "0.001")
    monkeypatch.setenv("X_BOOL", "Yes")
    monkeypatch.setenv("X_STR", "   ")
    assert utils.getenv_int("X_INT", 1, 0, 10) == 10
    assert utils.getenv_float("X_FLOAT", 1.0, 0.5) == 0.5
    assert utils.getenv_bool("X_BOOL", False) is True
    assert utils.getenv_str("X_STR", "fallback") == "fallback"
    assert utils.getenv_int("X_MISSING", 7) == 7


def test_parse_log_level():
    assert utils.parse_log_level("debug") == logging.DEBUG
    assert utils.parse_log_level("WARNING") == logging.WARNING
    assert utils.parse_log_level("chatty", logging.ERROR) == logging.ERROR
    assert utils.parse_log_level("") == logging.INFO


def test_error_hierarchy():
    assert issubclass(utils.ConfigError, utils.SpiderError)
    assert issubclass(utils.ConfigError, ValueError)
    assert issubclass(utils.InvalidRequest, ValueError)
    assert issubclass(utils.StoreUnavailable, utils.SpiderError)


def test_error_message_falls_back_to_class_name():
    assert utils.error_message(RuntimeError("boom")) == "boom"
    assert utils.error_message(TimeoutError()) == "TimeoutError"


def test_maybe_await():
    async def coro():
        return 5

    async def main():
        return await utils.maybe_await(coro()), await utils.maybe_await(6)

    assert asyncio.run(main()) == (5, 6)
