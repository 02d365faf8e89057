from tcr import settings as settings_mod


def test_env_values_are_parsed(monkeypatch):
    monkeypatch.setenv("TCR_WORKERS", "4")
    monkeypatch.setenv("TCR_START_CONTROLLER", "off")

    assert settings_mod._env("WORKERS", 1, int) == 4
    assert settings_mod._env("START_CONTROLLER", True, settings_mod._flag) is False


def test_unset_or_garbage_env_falls_back_to_default(monkeypatch):
    monkeypatch.delenv("TCR_WORKERS", raising=False)
    monkeypatch.setenv("TCR_RESYNC_INTERVAL_S", "soon")
    monkeypatch.setenv("TCR_START_CONTROLLER", "maybe")

    assert settings_mod._env("WORKERS", 1, int) == 1
    assert settings_mod._env("RESYNC_INTERVAL_S", 30, int) == 30
    assert settings_mod._env("START_CONTROLLER", True, settings_mod._flag) is True
