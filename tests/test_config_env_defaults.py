import logging
import sys

import pytest

from mock_interview import main as main_module
from mock_interview.config import get_settings
from mock_interview.main import build_params, build_parser, build_session_config


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("TURN_BACKEND", "ollama")
    monkeypatch.setenv("RATE_LIMIT_COOLDOWN_MS", "45000")
    monkeypatch.setenv("PIPER_MODEL", "/tmp/voice.onnx")
    monkeypatch.setenv("PERSISTENCE_BACKEND", "sql")

    settings = get_settings()

    assert settings.turn_backend == "ollama"
    assert settings.rate_limit_cooldown_ms == 45_000
    assert settings.piper_model == "/tmp/voice.onnx"
    assert settings.persistence_backend == "sql"


def test_cli_defaults_follow_settings(monkeypatch):
    monkeypatch.setenv("SPEECH_MODE", "voice")
    monkeypatch.setenv("INTERVIEW_LANGUAGE", "FR")

    args = build_parser().parse_args(["--role", "Cloud", "--duration", "25"])
    params = build_params(args)

    assert args.mode == "voice"
    assert args.persist == "none"
    assert params.language == "FR"
    assert params.role == "Cloud"
    assert params.duration_minutes == 25


def test_session_config_uses_admission_settings(monkeypatch):
    monkeypatch.setenv("MIN_UTTERANCE_WORDS", "5")
    monkeypatch.setenv("SILENCE_TIMEOUT_MS", "1500")
    monkeypatch.setenv("TTS_RATE", "1.25")

    config = build_session_config(get_settings(), tts_enabled=False)

    assert config.admission.min_words == 5
    assert config.admission.min_chars == 12
    assert config.silence_timeout_ms == 1500
    assert config.speech_options.rate == 1.25
    assert config.tts_enabled is False


def test_main_logs_failures_on_its_module_logger(monkeypatch, caplog):
    async def broken_run(argv):
        raise RuntimeError("turn API misconfigured")

    monkeypatch.setattr(main_module, "run_interview", broken_run)
    monkeypatch.setattr(sys, "argv", ["mock-interview"])

    with caplog.at_level(logging.ERROR), pytest.raises(SystemExit) as exc_info:
        main_module.main()

    assert exc_info.value.code == 1
    records = [r for r in caplog.records if "turn API misconfigured" in r.getMessage()]
    assert [r.name for r in records] == ["mock_interview.main"]
