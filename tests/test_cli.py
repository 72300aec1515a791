import os
import tempfile

import pytest

from diagnosis_core.presentation.cli import main


@pytest.fixture
def env(monkeypatch):
    with tempfile.TemporaryDirectory() as tmp:
        monkeypatch.setenv("HISTORY_STORE_PATH", os.path.join(tmp, "history.json"))
        monkeypatch.delenv("REDIS_URL", raising=False)
        monkeypatch.delenv("CLINICIAN_WEBHOOK_URL", raising=False)
        monkeypatch.delenv("REFERENCE_DATA_PATH", raising=False)
        yield tmp


def test_diagnose_free_text(env, capsys):
    assert main(["diagnose", "I have a fever, a bad cough and body aches", "--age", "35"]) == 0
    out = capsys.readouterr().out
    assert "NOT a medical diagnosis" in out
    assert "Possible conditions" in out


def test_diagnose_save_then_history(env, capsys):
    assert main(["diagnose", "--symptom", "fever", "--symptom", "cough", "--save"]) == 0
    capsys.readouterr()

    assert main(["history"]) == 0
    assert "assessment" in capsys.readouterr().out


def test_unknown_symptom_exits_with_error(env, capsys):
    assert main(["diagnose", "--symptom", "levitation"]) == 2
    assert "not_found" in capsys.readouterr().err


def test_out_of_range_severity_exits_with_error(env, capsys):
    assert main(["diagnose", "--symptom", "fever", "--severity", "0"]) == 2
    err = capsys.readouterr().err
    assert "input_error" in err
    assert "severity_score" in err


def test_unknown_log_level_does_not_crash(env, monkeypatch, capsys):
    monkeypatch.setenv("LOG_LEVEL", "chatty")
    assert main(["history"]) == 0
