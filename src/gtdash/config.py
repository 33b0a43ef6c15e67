"""gtdash configuration management."""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path

GTDASH_HOME = Path.home() / ".gtdash"
GTDASH_CONFIG = GTDASH_HOME / "config.json"


@dataclass
class PathsConfig:
    """Where the external tools and their stores live."""

    gt_bin: str = "gt"
    bd_bin: str = "bd"
    gt_base_path: str = ""  # Gas Town root; commands run from here
    beads_path: str = ""  # .beads directory (daemon.lock, daemon.log, beads.db)

    def resolved_beads_path(self) -> str:
        if self.beads_path:
            return self.beads_path
        if self.gt_base_path:
            return str(Path(self.gt_base_path) / ".beads")
        return ""


@dataclass
class TimeoutConfig:
    """Per-call-site timeouts in seconds."""

    status: float = 15.0
    quick_status: float = 5.0
    nudge: float = 10.0
    mail: float = 10.0
    chat_send: float = 30.0
    crew_start: float = 30.0
    crew_remove: float = 20.0
    crew_add: float = 60.0
    mayor_restart: float = 30.0
    rig_action: float = 30.0
    rig_add: float = 120.0
    orphans: float = 30.0
    refinery: float = 15.0
    beads: float = 10.0


@dataclass
class LimitsConfig:
    """Input bounds and cache tuning."""

    nudge_max_length: int = 1000
    body_max_length: int = 5000
    subject_max_length: int = 200
    sent_mail_limit: int = 200
    status_cache_ttl: float = 5.0  # Matches the dashboard polling interval


@dataclass
class ServerConfig:
    """REST server bind address."""

    host: str = "127.0.0.1"
    port: int = 3001


@dataclass
class DashboardConfig:
    """Top-level gtdash configuration."""

    paths: PathsConfig = field(default_factory=PathsConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> "DashboardConfig":
        """Load config from disk or return defaults.

        Env vars (GT_BASE_PATH, BEADS_PATH, GT_BIN, BD_BIN, GTDASH_HOST,
        GTDASH_PORT) override file config.
        """
        config_path = path or GTDASH_CONFIG
        config = cls()
        if config_path.exists():
            data = json.loads(config_path.read_text())
            for section in ("paths", "timeouts", "limits", "server"):
                if section in data:
                    target = getattr(config, section)
                    for k, v in data[section].items():
                        if hasattr(target, k):
                            setattr(target, k, v)

        gt_base = os.environ.get("GT_BASE_PATH")
        beads = os.environ.get("BEADS_PATH")
        gt_bin = os.environ.get("GT_BIN")
        bd_bin = os.environ.get("BD_BIN")
        host = os.environ.get("GTDASH_HOST")
        port = os.environ.get("GTDASH_PORT")

        if gt_base:
            config.paths.gt_base_path = gt_base
        if beads:
            config.paths.beads_path = beads
        if gt_bin:
            config.paths.gt_bin = gt_bin
        if bd_bin:
            config.paths.bd_bin = bd_bin
        if host:
            config.server.host = host
        if port:
            config.server.port = int(port)

        return config

    def save(self, path: Path | None = None) -> None:
        """Persist config to disk."""
        config_path = path or GTDASH_CONFIG
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(json.dumps(self.to_dict(), indent=2))

    def to_dict(self) -> dict:
        return asdict(self)

    def set_value(self, key: str, value: str) -> None:
        """Set a dotted key such as `timeouts.nudge=15`, coercing to the field's type."""
        if "." not in key:
            raise KeyError(f"Unknown config key: {key}")
        section_name, attr = key.split(".", 1)
        section = getattr(self, section_name, None)
        if section is None or not hasattr(section, attr):
            raise KeyError(f"Unknown config key: {key}")
        current = getattr(section, attr)
        if isinstance(current, bool):
            coerced = value.lower() in ("1", "true", "yes", "on")
        elif isinstance(current, int):
            coerced = int(value)
        elif isinstance(current, float):
            coerced = float(value)
        else:
            coerced = value
        setattr(section, attr, coerced)


def ensure_gtdash_home() -> None:
    """Create gtdash home directory."""
    GTDASH_HOME.mkdir(parents=True, exist_ok=True)
