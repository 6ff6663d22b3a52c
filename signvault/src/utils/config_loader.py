import os
from pathlib import Path
import toml
from typing import Dict, Any, Optional

from signvault.src.core.errors import ConfigError

DEFAULT_PROFILES_DIR = Path.home() / "Library" / "MobileDevice" / "Provisioning Profiles"
DEFAULT_KEYCHAINS_DIR = Path.home() / "Library" / "Keychains"
DEFAULT_KEYCHAIN_NAME = "ci-signing"


def get_config_path() -> Path:
    """Return the path to the configuration file."""
    env_path = os.environ.get("SIGNVAULT_CONFIG")
    if env_path:
        return Path(env_path)
    return Path.home() / ".signvault" / "config.toml"


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from TOML file."""
    config_path = config_path or get_config_path()
    if not config_path.exists():
        return {}

    try:
        return toml.load(config_path)
    except (toml.TomlDecodeError, OSError) as e:
        raise ConfigError("Loading config", f"{config_path}: {e}")


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = config.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError("Loading config", f"[{name}] must be a table")
    return section


def get_profiles_dir(config: Dict[str, Any]) -> Path:
    """Installed provisioning profiles directory, env first."""
    env_dir = os.environ.get("SIGNVAULT_PROFILES_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    configured = _section(config, "paths").get("profiles_dir")
    return Path(configured).expanduser() if configured else DEFAULT_PROFILES_DIR


def get_keychains_dir(config: Dict[str, Any]) -> Path:
    env_dir = os.environ.get("SIGNVAULT_KEYCHAINS_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    configured = _section(config, "paths").get("keychains_dir")
    return Path(configured).expanduser() if configured else DEFAULT_KEYCHAINS_DIR


def get_profile_decoder_name(config: Dict[str, Any]) -> str:
    name = os.environ.get("SIGNVAULT_PROFILE_DECODER") or _section(
        config, "profiles"
    ).get("decoder", "asn1")
    if name not in ("asn1", "security"):
        raise ConfigError(
            "Loading config", f"profiles.decoder must be 'asn1' or 'security', got {name!r}"
        )
    return name


def get_keychain_settings(config: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """Keychain name and password for CI runs. The password may be None."""
    keychain_config = _section(config, "keychain")
    return {
        "name": os.environ.get("SIGNVAULT_KEYCHAIN_NAME")
        or keychain_config.get("name", DEFAULT_KEYCHAIN_NAME),
        "password": os.environ.get("SIGNVAULT_KEYCHAIN_PASSWORD")
        or keychain_config.get("password"),
    }


def get_shell_timeout(config: Dict[str, Any]) -> Optional[float]:
    raw = os.environ.get("SIGNVAULT_SHELL_TIMEOUT") or _section(config, "shell").get(
        "timeout"
    )
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ConfigError("Loading config", f"shell.timeout is not a number: {raw!r}")


def get_connect_settings(config: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """App Store Connect API key settings from config."""
    connect_config = _section(config, "app_store_connect")
    return {
        "key_id": connect_config.get("key_id"),
        "issuer_id": connect_config.get("issuer_id"),
        "private_key": connect_config.get("private_key"),
        "private_key_path": connect_config.get("private_key_path"),
    }
