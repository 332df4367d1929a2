import logging
import os
from pathlib import Path

import pytest

from spider.config import JobConfig, load_settings
from spider.utils import ConfigError


def _clear_env(keys):
    for k in keys:
        os.environ.pop(k, None)


def test_load_settings_defaults(monkeypatch):
    _clear_env([
        "SPIDER_REDIS_URL",
        "SPIDER_KEY_PREFIX",
        "SPIDER_LOG_DIR",
        "SPIDER_LOG_LEVEL",
        "SPIDER_REDIS_CONNECT_ATTEMPTS",
        "SPIDER_REDIS_SOCKET_TIMEOUT",
        "SPIDER_USER_AGENT",
        "SPIDER_FOLLOW_REDIRECTS",
    ])

    s = load_settings()
    assert s.redis_url == "redis://127.0.0.1:6379/0"
    assert s.key_prefix == "spider."
    assert s.redis_connect_attempts == 3
    assert s.redis_socket_timeout == 5.0
    assert s.log_level == "INFO"
    assert s.log_dir.name == "logs"
    assert s.follow_redirects is True
    assert s.user_agent


def test_load_settings_env_overrides_and_clamps(monkeypatch, tmp_path):
    monkeypatch.setenv("SPIDER_REDIS_URL", "redis://cache:6380/2")
    monkeypatch.setenv("SPIDER_KEY_PREFIX", "jobs.")
    monkeypatch.setenv("SPIDER_LOG_DIR", str(tmp_path))
    monkeypatch.setenv("SPIDER_LOG_LEVEL", "debug")
    monkeypatch.setenv("SPIDER_REDIS_CONNECT_ATTEMPTS", "999")
    monkeypatch.setenv("SPIDER_FOLLOW_REDIRECTS", "no")

    s = load_settings()
    assert s.redis_url == "redis://cache:6380/2"
    assert s.key_prefix == "jobs."
    assert s.log_dir == Path(str(tmp_path))
    assert s.log_level == "DEBUG"
    assert s.redis_connect_attempts == 10
    assert s.follow_redirects is False

    # unparsable -> default
    monkeypatch.setenv("SPIDER_REDIS_CONNECT_ATTEMPTS", "many")
    assert load_settings().redis_connect_attempts == 3


def test_job_config_defaults():
    cfg = JobConfig(name="books")
    assert cfg.concurrency == 1
    assert cfg.resume is False
    assert cfg.timeout == 10.0
    assert cfg.log_step == 2
    assert cfg.base_uri == ""
    assert cfg.interval == 0.0
    assert cfg.queue_len is None
    assert cfg.retry_count == 2
    assert cfg.check_black is True
    assert list(cfg.requests()) == []
    assert cfg.success("body", None, None, {}) is None
    assert cfg.error(None, "boom", None) is None


def test_job_config_clamps():
    cfg = JobConfig(name="x", concurrency=0, log_step=-3, retry_count=-1, interval=-2, queue_len=0)
    assert cfg.concurrency == 1
    assert cfg.log_step == 1
    assert cfg.retry_count == 0
    assert cfg.interval == 0.0
    assert cfg.queue_len is None


@pytest.mark.parametrize("name", ["", "   ", None])
def test_job_config_requires_name(name):
    with pytest.raises(ConfigError):
        JobConfig(name=name)


def test_job_config_rejects_non_callables():
    with pytest.raises(ConfigError):
        JobConfig(name="x", requests=["a", "b"])
    with pytest.raises(ConfigError):
        JobConfig(name="x", success="nope")


def test_from_mapping_continue_and_unknown_keys(caplog):
    caplog.set_level(logging.WARNING, logger="spider.config")
    cfg = JobConfig.from_mapping({"name": "books", "continue": 1, "concurrency": 4, "proxy": "x"})
    assert cfg.resume is True
    assert cfg.concurrency == 4
    assert "proxy" in caplog.text


def test_from_mapping_missing_name():
    with pytest.raises(ConfigError):
        JobConfig.from_mapping({"concurrency": 2})
    # ConfigError is still a ValueError for callers that only know the builtin
    with pytest.raises(ValueError):
        JobConfig.from_mapping({})
