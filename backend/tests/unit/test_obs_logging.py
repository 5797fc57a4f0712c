from __future__ import annotations

import json
import logging

from forum.obs import logging as obs_logging


def _record(msg: str = "moderation action applied", **extra) -> logging.LogRecord:
    record = logging.LogRecord("forum.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_bound_context_and_extras() -> None:
    tokens = obs_logging.bind_context(request_id="req-1", actor_id="mod-1")
    try:
        payload = json.loads(obs_logging.JSONLogFormatter().format(_record(action="ban_user", scope="space:s1")))
    finally:
        obs_logging.reset_context(tokens)
    assert payload["msg"] == "moderation action applied"
    assert payload["request_id"] == "req-1"
    assert payload["actor_id"] == "mod-1"
    assert payload["action"] == "ban_user"
    assert payload["scope"] == "space:s1"


def test_formatter_redacts_sensitive_fields() -> None:
    payload = json.loads(obs_logging.JSONLogFormatter().format(_record(content="private words", reason="x" * 300)))
    assert payload["content"] == "[redacted]"
    assert len(payload["reason"]) == 257


def test_sampling_keeps_warnings(monkeypatch) -> None:
    monkeypatch.setattr(obs_logging.settings, "obs_log_sampling_rate_info", 0.0)
    sampler = obs_logging.InfoSamplingFilter()
    assert not sampler.filter(_record())
    warning = _record()
    warning.levelno = logging.WARNING
    assert sampler.filter(warning)


def test_init_configures_logging_once(monkeypatch) -> None:
    from forum import obs

    calls: list[int] = []
    monkeypatch.setattr(obs, "_initialised", False)
    monkeypatch.setattr(obs.obs_logging, "configure_logging", lambda: calls.append(1))
    obs.init()
    obs.init()
    assert calls == [1]
