from core.config import Settings


def test_settings_read_env_by_field_name_and_alias(monkeypatch):
    monkeypatch.setenv("APP_NAME", "Relay Staging")
    monkeypatch.setenv("REALTIME_WS_SEND_QUEUE_MAX", "7")
    monkeypatch.setenv("PUSH__BATCH_SIZE", "50")

    s = Settings(_env_file=None)

    assert s.PROJECT_NAME == "Relay Staging"
    assert s.REALTIME_WS_SEND_QUEUE_MAX == 7
    assert s.push.batch_size == 50


def test_fields_carry_no_legacy_env_extra():
    for name, info in Settings.model_fields.items():
        assert not (info.json_schema_extra or {}).get("env"), name
