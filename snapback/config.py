import json
from pathlib import Path

SNAPBACKCONFIG = ".snapbackconfig"
SNAPBACK_HOME = Path.home() / ".snapback"
GLOBAL_CONFIG_FILE = SNAPBACK_HOME / "config.json"

DEFAULT_CONFIG = {
    "volume": "/",
    "jobs_root": str(Path.home() / "jobs"),
    "provider": "local",
    "snapshot_ttl_hours": 24,
    # Optional: "btrfs_snapshot_dir": "/data/.snapshots"
    # Optional: "cloudwatch_log_group": "/snapback/workstation-1"
}


def load_global_config():
    """Load ~/.snapback/config.json, the machine-wide defaults set by snapback config."""
    if GLOBAL_CONFIG_FILE.exists():
        try:
            return json.loads(GLOBAL_CONFIG_FILE.read_text())
        except (json.JSONDecodeError, OSError):
            pass
    return {}


def save_global_config(updates):
    """Merge updates into ~/.snapback/config.json."""
    existing = load_global_config()
    existing.update(updates)
    GLOBAL_CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    GLOBAL_CONFIG_FILE.write_text(json.dumps(existing, indent=2) + "\n")


def find_config():
    """Walk up from cwd to find .snapbackconfig, like git finds .git."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        config_path = parent / SNAPBACKCONFIG
        if config_path.exists():
            return config_path
    return None


def load_config():
    # Merge order: defaults → global config → .snapbackconfig
    config = {**DEFAULT_CONFIG, **load_global_config()}

    config_path = find_config()
    if config_path:
        try:
            raw = json.loads(config_path.read_text())
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {config_path}: {e}")
        config.update(raw)

    try:
        ttl = float(config["snapshot_ttl_hours"])
    except (TypeError, ValueError):
        raise ValueError(f"snapshot_ttl_hours must be a number, got {config['snapshot_ttl_hours']!r}")
    if ttl <= 0:
        raise ValueError("snapshot_ttl_hours must be positive")
    config["snapshot_ttl_hours"] = ttl

    return config


def init_config(path=None, volume=None, jobs_root=None, provider=None):
    """Create a .snapbackconfig in the given directory."""
    target = Path(path) if path else Path.cwd()
    config_path = target / SNAPBACKCONFIG
    global_cfg = load_global_config()
    init = {
        "volume": volume or global_cfg.get("volume") or DEFAULT_CONFIG["volume"],
        "jobs_root": jobs_root or global_cfg.get("jobs_root") or str(target),
        "provider": provider or global_cfg.get("provider") or DEFAULT_CONFIG["provider"],
    }
    config_path.write_text(json.dumps(init, indent=2) + "\n")
    return config_path
