import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigurationError

DEFAULT_DATABASE = "gearcats-qr-tracker.db"


def load_config(path: str | Path) -> dict:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")
    with config_path.open("rb") as f:
        return tomllib.load(f)


def load_config_or_defaults(path: str | Path, *, explicit: bool) -> dict:
    """Load ``path``; a missing file is only an error when it was asked for."""
    try:
        return load_config(path)
    except FileNotFoundError:
        if explicit:
            raise
        return {}
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Invalid TOML in {path}: {exc}") from exc


@dataclass
class TrackerSettings:
    database: str = DEFAULT_DATABASE
    machine_id: str | None = None
    camera_role: str = "tracking"
    camera_index: int | None = None
    max_index: int = 8
    preferred_width: int = 0
    preferred_height: int = 0
    mirror: bool = False
    qr_backend: str = "opencv"
    qr_scales: list[int] = field(default_factory=lambda: [1, 2, 4, 8])
    cooldown_seconds: float = 5.0
    message_seconds: float = 60.0
    roster_cache_seconds: float = 60.0
    guest_prefix: str = "Guest"
    adult_guests: list[str] = field(default_factory=list)
    min_adults: int = 2
    show_display: bool = True
    log_level: str = "INFO"
    log_file: str | None = None


def settings_from_config(config: dict) -> TrackerSettings:
    db_cfg = config.get("database", {})
    machine_cfg = config.get("machine", {})
    cam_cfg = config.get("camera", {})
    qr_cfg = config.get("qr", {})
    timing_cfg = config.get("timing", {})
    roster_cfg = config.get("roster", {})
    audit_cfg = config.get("audit", {})
    ui_cfg = config.get("ui", {})
    log_cfg = config.get("logging", {})

    settings = TrackerSettings(
        database=db_cfg.get("path", DEFAULT_DATABASE),
        machine_id=machine_cfg.get("id"),
        camera_role=cam_cfg.get("role", "tracking"),
        camera_index=cam_cfg.get("index"),
        max_index=cam_cfg.get("max_index", 8),
        preferred_width=cam_cfg.get("preferred_width", 0),
        preferred_height=cam_cfg.get("preferred_height", 0),
        mirror=cam_cfg.get("mirror", False),
        qr_backend=qr_cfg.get("backend", "opencv"),
        qr_scales=list(qr_cfg.get("scales", [1, 2, 4, 8])),
        cooldown_seconds=float(timing_cfg.get("cooldown_seconds", 5.0)),
        message_seconds=float(timing_cfg.get("message_seconds", 60.0)),
        roster_cache_seconds=float(roster_cfg.get("cache_seconds", 60.0)),
        guest_prefix=roster_cfg.get("guest_prefix", "Guest"),
        adult_guests=list(roster_cfg.get("adult_guests", [])),
        min_adults=int(audit_cfg.get("min_adults", 2)),
        show_display=ui_cfg.get("show_display", True),
        log_level=log_cfg.get("level", "INFO"),
        log_file=log_cfg.get("file"),
    )

    if settings.cooldown_seconds < 0:
        raise ConfigurationError("timing.cooldown_seconds must not be negative")
    if settings.min_adults < 0:
        raise ConfigurationError("audit.min_adults must not be negative")
    if not settings.guest_prefix:
        raise ConfigurationError("roster.guest_prefix must not be empty")
    if not settings.qr_scales or any(s < 1 for s in settings.qr_scales):
        raise ConfigurationError("qr.scales must be a list of factors >= 1")
    return settings
