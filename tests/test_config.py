"""Settings: config file plus ZAPDESK_* environment overrides."""

import json

from zapdesk.config import Settings, load_config, load_settings, save_config


def test_defaults(tmp_path):
    settings = load_settings(tmp_path / "missing.json", environ={})
    assert settings == Settings()
    assert settings.incoming_queue == "whatsapp.incoming"
    assert settings.status_queues == ["session.status", "out.qrcode"]
    assert settings.api_base_url is None


def test_file_then_env(tmp_path):
    path = tmp_path / "config.json"
    save_config({"rabbit_url": "amqp://file/", "prefetch": 4, "default_max_chats": 2}, path)
    assert load_config(path)["prefetch"] == 4

    settings = load_settings(path, environ={
        "ZAPDESK_RABBIT_URL": "amqp://env/",
        "ZAPDESK_STATUS_QUEUES": "session.status, ",
        "ZAPDESK_COMMAND_TIMEOUT": "12.5",
        "UNRELATED": "x",
    })
    assert settings.rabbit_url == "amqp://env/"
    assert settings.prefetch == 4
    assert settings.default_max_chats == 2
    assert settings.status_queues == ["session.status"]
    assert settings.command_timeout == 12.5


def test_corrupt_file_is_ignored(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{oops")
    assert load_config(path) == {}
    assert json.loads(json.dumps(load_settings(path, environ={}).model_dump()))["prefetch"] == 1
