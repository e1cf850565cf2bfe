import configparser
from pathlib import Path
from typing import NamedTuple, Optional

from synsyu.util.constants import (
    DEFAULT_DISK_MARGIN_MB,
    DEFAULT_MANIFEST_PATH,
    DEFAULT_MIN_FREE_SPACE_BYTES,
)

SECTION = "synsyu"

FREE_SPACE_PROBES = ("df", "statvfs")


class ConfigError(ValueError):
    def __init__(self, key, value, msg):
        self.key = key
        self.value = value
        self.msg = msg
        super().__init__(f"{key} = {value!r}: {msg}")


class Settings(NamedTuple):
    manifest_path: Path = Path(DEFAULT_MANIFEST_PATH)
    disk_check: bool = True
    min_free_space_bytes: int = DEFAULT_MIN_FREE_SPACE_BYTES
    disk_margin_mb: int = DEFAULT_DISK_MARGIN_MB
    free_space_probe: str = "df"
    dry_run: bool = False
    failure_log: Optional[Path] = None


def parse_config(log, config_file: Optional[Path]):
    config = configparser.ConfigParser()
    if config_file:
        if config_file.is_file():
            log.debug(
                "parse-config",
                config_file=config_file,
            )
            config.read(config_file)
        else:
            log.warning(
                "parse-config-not-found",
                config_file=config_file,
            )

    return config


def _get_bool(section, key, default):
    try:
        return section.getboolean(key, fallback=default)
    except ValueError:
        raise ConfigError(key, section.get(key), "expected a boolean")


def _get_size(section, key, default):
    raw = section.get(key, fallback=None)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigError(key, raw, "expected an integer")
    if value < 0:
        raise ConfigError(key, raw, "must not be negative")
    return value


def settings_from_config(config: configparser.ConfigParser, **overrides):
    """Builds Settings from the [synsyu] section of a parsed config.

    Keyword arguments which are not None take precedence over the config
    file, that's how command line options are applied.
    """
    if not config.has_section(SECTION):
        config.add_section(SECTION)
    section = config[SECTION]
    defaults = Settings()

    probe = section.get("free_space_probe", defaults.free_space_probe).strip()
    if probe not in FREE_SPACE_PROBES:
        raise ConfigError(
            "free_space_probe",
            probe,
            "expected one of " + ", ".join(FREE_SPACE_PROBES),
        )

    failure_log = section.get("failure_log", "").strip()

    settings = Settings(
        manifest_path=Path(
            section.get("manifest_path", str(defaults.manifest_path))
        ),
        disk_check=_get_bool(section, "disk_check", defaults.disk_check),
        min_free_space_bytes=_get_size(
            section, "min_free_space_bytes", defaults.min_free_space_bytes
        ),
        disk_margin_mb=_get_size(
            section, "disk_margin_mb", defaults.disk_margin_mb
        ),
        free_space_probe=probe,
        dry_run=_get_bool(section, "dry_run", defaults.dry_run),
        failure_log=Path(failure_log) if failure_log else None,
    )

    overrides = {k: v for k, v in overrides.items() if v is not None}
    if "free_space_probe" in overrides:
        if overrides["free_space_probe"] not in FREE_SPACE_PROBES:
            raise ConfigError(
                "free_space_probe",
                overrides["free_space_probe"],
                "expected one of " + ", ".join(FREE_SPACE_PROBES),
            )
    return settings._replace(**overrides)


def load_settings(log, config_file: Optional[Path], **overrides) -> Settings:
    config = parse_config(log, config_file)
    settings = settings_from_config(config, **overrides)
    log.debug("settings-loaded", subsystem="CONFIG", **settings._asdict())
    return settings
