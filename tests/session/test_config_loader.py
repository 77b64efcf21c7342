import pytest
import yaml

from iot_core_mqtt.session.config_loader import DEFAULTS, load_config, with_defaults


def test_missing_file_yields_defaults(tmp_path):
    config = load_config(tmp_path / "absent.yaml")

    assert config == DEFAULTS
    assert config is not DEFAULTS


def test_sections_are_merged_with_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "device:\n"
        "  project_id: p\n"
        "  device_id: d\n"
        "mqtt:\n"
        "  use_lts: true\n"
        "backoff:\n"
        "  maximum: 120\n"
    )

    config = load_config(path)

    assert config["device"] == {"project_id": "p", "device_id": "d"}
    assert config["mqtt"]["use_lts"] is True
    assert config["mqtt"]["use_443_port"] is False
    assert config["backoff"]["maximum"] == 120
    assert config["backoff"]["factor"] == 2.5


def test_empty_file_yields_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")

    assert load_config(path) == DEFAULTS


def test_invalid_yaml_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("mqtt: [unclosed\n")

    with pytest.raises(yaml.YAMLError):
        load_config(path)


def test_with_defaults_does_not_mutate_defaults():
    with_defaults({"mqtt": {"use_lts": True}})

    assert DEFAULTS["mqtt"]["use_lts"] is False
