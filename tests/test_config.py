from __future__ import annotations

import pytest

from qr_tracker.config import (
    DEFAULT_DATABASE,
    load_config,
    load_config_or_defaults,
    settings_from_config,
)
from qr_tracker.errors import ConfigurationError


def test_defaults() -> None:
    settings = settings_from_config({})
    assert settings.database == DEFAULT_DATABASE
    assert settings.cooldown_seconds == 5.0
    assert settings.min_adults == 2
    assert settings.guest_prefix == "Guest"
    assert settings.qr_scales == [1, 2, 4, 8]


def test_values_from_toml(tmp_path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(
        '[database]\npath = "x.db"\n'
        "[timing]\ncooldown_seconds = 2.5\n"
        '[roster]\nadult_guests = ["Guest-Parent"]\n'
        "[camera]\nindex = 3\n",
        encoding="utf-8",
    )
    settings = settings_from_config(load_config(path))
    assert settings.database == "x.db"
    assert settings.cooldown_seconds == 2.5
    assert settings.adult_guests == ["Guest-Parent"]
    assert settings.camera_index == 3


def test_missing_file(tmp_path) -> None:
    missing = tmp_path / "nope.toml"
    with pytest.raises(FileNotFoundError):
        load_config(missing)
    assert load_config_or_defaults(missing, explicit=False) == {}
    with pytest.raises(FileNotFoundError):
        load_config_or_defaults(missing, explicit=True)


def test_invalid_toml(tmp_path) -> None:
    path = tmp_path / "bad.toml"
    path.write_text("[timing\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config_or_defaults(path, explicit=True)


@pytest.mark.parametrize(
    "config",
    [
        {"timing": {"cooldown_seconds": -1}},
        {"audit": {"min_adults": -2}},
        {"roster": {"guest_prefix": ""}},
        {"qr": {"scales": [0]}},
    ],
)
def test_invalid_values(config) -> None:
    with pytest.raises(ConfigurationError):
        settings_from_config(config)
