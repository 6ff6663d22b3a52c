import base64
import os
import secrets
from pathlib import Path
from typing import List

from signvault.commands.inspect import build_context
from signvault.logger import get_console
from signvault.src.ci.orchestrator import CISigningOrchestrator
from signvault.src.core.errors import ConfigError, SignVaultError
from signvault.src.utils.config_loader import get_keychain_settings

console = get_console()


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise ConfigError("CI code signing setup", f"environment variable {name} is not set")
    return value


def collect_profiles(args) -> List[str]:
    """Base64 payloads from --profile-env variables and --profile files, in order"""
    payloads = [_require_env(name) for name in args.profile_env]
    for path in args.profile:
        try:
            payloads.append(base64.b64encode(Path(path).read_bytes()).decode("ascii"))
        except OSError as e:
            raise ConfigError("CI code signing setup", f"{path}: {e}")
    return payloads


def export_keychain_path(path: str) -> None:
    """Hand the keychain path to later GitHub Actions steps"""
    github_env = os.environ.get("GITHUB_ENV")
    if not github_env:
        return
    with open(github_env, "a") as f:
        f.write(f"SIGNVAULT_KEYCHAIN_PATH={path}\n")
    console.print("[blue]Exported SIGNVAULT_KEYCHAIN_PATH to GITHUB_ENV[/]")


def run_ci_setup_command(args) -> int:
    try:
        context = build_context(args)
        settings = get_keychain_settings(context.config)
        keychain_name = args.keychain_name or settings["name"]
        keychain_password = settings["password"] or secrets.token_hex(16)

        orchestrator = CISigningOrchestrator(context)
        prepared = orchestrator.setup_ci_code_signing(
            certificate_b64=_require_env(args.certificate_env),
            certificate_password=os.environ.get(args.certificate_password_env, ""),
            profiles_b64=collect_profiles(args),
            keychain_name=keychain_name,
            keychain_password=keychain_password,
        )
    except SignVaultError as e:
        console.print(f"[red]Error:[/] {e}")
        return 1

    console.print(f"[green]Keychain:[/] {prepared.keychain.path}")
    console.print(f"[green]Signing identity:[/] {prepared.certificate.label}")
    for profile in prepared.profiles:
        console.print(f"[green]Profile:[/] {profile.name} -> {profile.bundle_id}")

    if args.export_options:
        path = prepared.export_options.write(args.export_options)
        console.print(f"[green]Export options written to:[/] {path}")

    export_keychain_path(prepared.keychain.path)
    return 0


def run_ci_cleanup_command(args) -> int:
    try:
        context = build_context(args)
        CISigningOrchestrator(context).cleanup_ci_code_signing(args.keychain_path)
        return 0
    except SignVaultError as e:
        console.print(f"[red]Error:[/] {e}")
        return 1
