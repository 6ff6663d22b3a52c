from pathlib import Path

import pytest

from signvault.src.core.context import SigningContext
from signvault.src.core.errors import ConfigError
from signvault.src.provisioning.profile_decoder import (
    CmsProfileDecoder,
    SecurityCmsProfileDecoder,
)
from signvault.src.utils.config_loader import (
    DEFAULT_KEYCHAIN_NAME,
    DEFAULT_PROFILES_DIR,
    get_config_path,
    get_connect_settings,
    get_keychain_settings,
    get_profile_decoder_name,
    get_profiles_dir,
    get_shell_timeout,
    load_config,
)

ENV_VARS = (
    "SIGNVAULT_CONFIG",
    "SIGNVAULT_PROFILES_DIR",
    "SIGNVAULT_KEYCHAINS_DIR",
    "SIGNVAULT_PROFILE_DECODER",
    "SIGNVAULT_KEYCHAIN_NAME",
    "SIGNVAULT_KEYCHAIN_PASSWORD",
    "SIGNVAULT_SHELL_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "config.toml"
    monkeypatch.setenv("SIGNVAULT_CONFIG", str(path))
    return path


def test_missing_config_is_empty(config_file):
    assert get_config_path() == config_file
    assert load_config() == {}


def test_defaults_without_config():
    assert get_profiles_dir({}) == DEFAULT_PROFILES_DIR
    assert get_profile_decoder_name({}) == "asn1"
    assert get_keychain_settings({}) == {"name": DEFAULT_KEYCHAIN_NAME, "password": None}
    assert get_shell_timeout({}) is None


def test_values_from_toml(config_file, tmp_path):
    config_file.write_text(
        f"""
[paths]
profiles_dir = "{tmp_path / 'profiles'}"
keychains_dir = "{tmp_path / 'keychains'}"

[profiles]
decoder = "security"

[keychain]
name = "release"

[shell]
timeout = 90

[app_store_connect]
key_id = "KEY123"
issuer_id = "issuer"
private_key_path = "~/AuthKey.p8"
"""
    )
    config = load_config()
    assert get_profiles_dir(config) == tmp_path / "profiles"
    assert get_profile_decoder_name(config) == "security"
    assert get_keychain_settings(config)["name"] == "release"
    assert get_shell_timeout(config) == 90.0
    assert get_connect_settings(config)["private_key_path"] == "~/AuthKey.p8"
    assert get_connect_settings(config)["private_key"] is None


def test_environment_overrides_file(monkeypatch, tmp_path):
    config = {
        "paths": {"profiles_dir": "/from/config"},
        "keychain": {"name": "from-config", "password": "config-pw"},
        "shell": {"timeout": 10},
    }
    monkeypatch.setenv("SIGNVAULT_PROFILES_DIR", str(tmp_path))
    monkeypatch.setenv("SIGNVAULT_KEYCHAIN_NAME", "from-env")
    monkeypatch.setenv("SIGNVAULT_KEYCHAIN_PASSWORD", "env-pw")
    monkeypatch.setenv("SIGNVAULT_SHELL_TIMEOUT", "2.5")

    assert get_profiles_dir(config) == tmp_path
    assert get_keychain_settings(config) == {"name": "from-env", "password": "env-pw"}
    assert get_shell_timeout(config) == 2.5


def test_malformed_toml_is_config_error(config_file):
    config_file.write_text("[paths\nprofiles_dir = ")
    with pytest.raises(ConfigError):
        load_config()


@pytest.mark.parametrize(
    "getter,config",
    [
        (get_profile_decoder_name, {"profiles": {"decoder": "openssl"}}),
        (get_shell_timeout, {"shell": {"timeout": "soon"}}),
        (get_profiles_dir, {"paths": "not a table"}),
    ],
)
def test_invalid_values_are_config_errors(getter, config):
    with pytest.raises(ConfigError):
        getter(config)


def test_context_from_config(fake_shell, tmp_path):
    config = {
        "paths": {
            "profiles_dir": str(tmp_path / "profiles"),
            "keychains_dir": str(tmp_path / "keychains"),
        },
        "profiles": {"decoder": "security"},
    }
    context = SigningContext.from_config(config, shell=fake_shell)
    assert context.profiles.profiles_dir == tmp_path / "profiles"
    assert context.keychains.keychains_dir == Path(tmp_path / "keychains")
    assert isinstance(context.profiles.decoder, SecurityCmsProfileDecoder)

    context = SigningContext.from_config({}, shell=fake_shell)
    assert isinstance(context.profiles.decoder, CmsProfileDecoder)
