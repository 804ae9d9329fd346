"""Environment configuration tests."""

from pathlib import Path

from broadcast_engine.config import load_config


class TestLoadConfig:
    def test_defaults(self, monkeypatch):
        for name in ("STORAGE_DIR", "MAX_RECONNECT_ATTEMPTS", "NOTIFY_WEBHOOK_URL", "NOTIFY_ON", "UPLOADS_DIR"):
            monkeypatch.delenv(name, raising=False)

        config = load_config()

        assert config.max_reconnect_attempts == 4
        assert config.backoff_max_seconds == 60.0
        assert config.playlist_repeat == 1000
        assert config.preflight_delay_seconds == 3.0
        assert config.uploads_dir == Path("storage") / "uploads"
        assert config.notifier.webhook_url is None
        assert config.notifier.notify_on == ("active", "reconnecting", "completed", "failed", "stopped")

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("STORAGE_DIR", "/srv/broadcast")
        monkeypatch.setenv("MAX_RECONNECT_ATTEMPTS", "6")
        monkeypatch.setenv("FFMPEG_PATH", "/opt/ffmpeg/bin/ffmpeg")
        monkeypatch.setenv("NOTIFY_WEBHOOK_URL", "https://hooks.example.com/broadcast")
        monkeypatch.setenv("NOTIFY_ON", "Failed, stopped")
        monkeypatch.delenv("UPLOADS_DIR", raising=False)

        config = load_config()

        assert config.storage_dir == Path("/srv/broadcast")
        assert config.uploads_dir == Path("/srv/broadcast/uploads")
        assert config.max_reconnect_attempts == 6
        assert config.ffmpeg_path == "/opt/ffmpeg/bin/ffmpeg"
        assert config.notifier.webhook_url == "https://hooks.example.com/broadcast"
        assert config.notifier.notify_on == ("failed", "stopped")
