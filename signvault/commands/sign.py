from rich.table import Table

from signvault.commands.inspect import build_context
from signvault.logger import get_console
from signvault.src.core.errors import SignVaultError

console = get_console()


def run_sign_command(args) -> int:
    try:
        context = build_context(args)
        context.signer.sign_app(
            args.path,
            args.identity,
            entitlements=args.entitlements,
            keychain=args.keychain,
        )
    except SignVaultError as e:
        console.print(f"[red]Error:[/] {e}")
        return 1
    return 0


def run_verify_command(args) -> int:
    try:
        context = build_context(args)
        if not context.signer.verify_signature(args.path, deep=not args.shallow):
            return 1
        console.print(f"[green]Signature valid:[/] {args.path}")

        if args.info:
            table = Table(title=f"Signing info: {args.path}")
            table.add_column("Key")
            table.add_column("Value")
            for key, value in context.signer.signing_info(args.path).items():
                table.add_row(key, value)
            console.print(table)
    except SignVaultError as e:
        console.print(f"[red]Error:[/] {e}")
        return 1
    return 0
