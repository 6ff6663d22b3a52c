from rich.table import Table

from signvault.logger import get_console
from signvault.src.core.context import SigningContext
from signvault.src.core.errors import SignVaultError
from signvault.src.core.models import CertificateType, utcnow
from signvault.src.core.shell import ShellGateway
from signvault.src.utils.config_loader import get_shell_timeout, load_config

console = get_console()


def build_context(args) -> SigningContext:
    """Context from config, honouring --verbose"""
    config = load_config()
    shell = ShellGateway(
        timeout=get_shell_timeout(config), verbose=getattr(args, "verbose", False)
    )
    return SigningContext.from_config(config, shell=shell)


def _format_date(value) -> str:
    return value.strftime("%Y-%m-%d") if value else "-"


def show_certificates(context: SigningContext, args) -> None:
    scan = context.certificates.scan_certificates(args.keychain)
    cert_type = CertificateType.from_label(args.cert_type) if args.cert_type else None
    now = utcnow()

    table = Table(title="Code Signing Identities")
    table.add_column("SHA-1")
    table.add_column("Type")
    table.add_column("Name")
    table.add_column("Team")
    table.add_column("Expires")
    table.add_column("Valid")

    for identity in scan.identities:
        if args.team and identity.team_id != args.team:
            continue
        if cert_type and identity.cert_type != cert_type:
            continue
        valid = identity.is_valid_at(now)
        if args.valid_only and not valid:
            continue
        table.add_row(
            identity.sha1_fingerprint,
            identity.cert_type.value,
            identity.common_name,
            identity.team_id,
            _format_date(identity.not_after),
            "[green]yes[/]" if valid else "[red]no[/]",
        )

    console.print(table)
    for line, reason in scan.skipped:
        console.print(f"[yellow]Skipped:[/] {line.strip()} ({reason})")


def show_profiles(context: SigningContext, args) -> None:
    registry = context.profiles
    if args.bundle_id:
        profile = registry.find_profile(args.bundle_id, team_id=args.team)
        if profile is None:
            console.print(f"[red]No valid profile matches {args.bundle_id}[/]")
        else:
            console.print(
                f"[green]{args.bundle_id}[/] -> {profile.name} ({profile.uuid}, {profile.profile_type.value})"
            )
        return

    scan = registry.scan_profiles()
    table = Table(title=f"Provisioning Profiles ({registry.profiles_dir})")
    table.add_column("UUID")
    table.add_column("Name")
    table.add_column("Bundle ID")
    table.add_column("Type")
    table.add_column("Team")
    table.add_column("Expires")

    for profile in scan.profiles:
        if args.team and profile.team_id != args.team:
            continue
        expires = _format_date(profile.expiration_date)
        if profile.is_expired:
            expires = f"[red]{expires}[/]"
        table.add_row(
            profile.uuid,
            profile.name,
            profile.bundle_id,
            profile.profile_type.value,
            profile.team_id,
            expires,
        )

    console.print(table)
    for path, reason in scan.failures:
        console.print(f"[yellow]Could not read {path.name}:[/] {reason}")


def run_inspect_command(args) -> int:
    try:
        context = build_context(args)
        if args.command == "certs":
            show_certificates(context, args)
        elif args.command == "profiles":
            show_profiles(context, args)
        elif args.command == "install-profile":
            profile = context.profiles.install_profile(args.profile_path)
            console.print(f"[green]Installed:[/] {profile.path}")
        elif args.command == "prune-profiles":
            context.profiles.remove_expired_profiles()
        return 0
    except SignVaultError as e:
        console.print(f"[red]Error:[/] {e}")
        return 1
