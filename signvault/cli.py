import argparse
import sys
from dotenv import load_dotenv
from rich.console import Console
from rich.theme import Theme
from rich.text import Text
from rich_argparse import RichHelpFormatter

from signvault import __version__
from signvault.arguments import (
    add_apps_arguments,
    add_certificate_arguments,
    add_ci_setup_arguments,
    add_profile_arguments,
    add_sign_arguments,
    add_token_arguments,
    add_verify_arguments,
)

APP_DESCRIPTION = "Code signing credentials for mobile CI"


class SignVaultHelpFormatter(RichHelpFormatter):
    """Formatter for the signvault CLI with rich styling."""

    def __init__(self, prog):
        super().__init__(prog, max_help_position=30, width=100)
        self.console = Console(
            theme=Theme(
                {
                    "command": "bold cyan",
                    "argument": "green",
                    "option": "yellow",
                    "title": "bold magenta",
                }
            )
        )

    def start_section(self, heading):
        heading_text = Text(heading, style="title")
        super().start_section(str(heading_text))


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="signvault",
        description=f"signvault: {APP_DESCRIPTION}",
        formatter_class=SignVaultHelpFormatter,
    )
    parser.add_argument(
        "--version", action="version", version=f"signvault {__version__}"
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Log every external command"
    )

    subparsers = parser.add_subparsers(dest="command")

    certs_parser = subparsers.add_parser(
        "certs",
        help="List installed code signing identities",
        formatter_class=SignVaultHelpFormatter,
    )
    add_certificate_arguments(certs_parser)

    profiles_parser = subparsers.add_parser(
        "profiles",
        help="List installed provisioning profiles",
        formatter_class=SignVaultHelpFormatter,
    )
    add_profile_arguments(profiles_parser)

    install_parser = subparsers.add_parser(
        "install-profile",
        help="Install a provisioning profile",
        formatter_class=SignVaultHelpFormatter,
    )
    install_parser.add_argument("profile_path", help="Path to a .mobileprovision file")

    subparsers.add_parser(
        "prune-profiles",
        help="Remove expired provisioning profiles",
        formatter_class=SignVaultHelpFormatter,
    )

    setup_parser = subparsers.add_parser(
        "ci-setup",
        help="Create a temporary keychain and install signing material",
        formatter_class=SignVaultHelpFormatter,
    )
    add_ci_setup_arguments(setup_parser)

    cleanup_parser = subparsers.add_parser(
        "ci-cleanup",
        help="Delete the temporary CI keychain",
        formatter_class=SignVaultHelpFormatter,
    )
    cleanup_parser.add_argument("keychain_path", help="Keychain path printed by ci-setup")

    token_parser = subparsers.add_parser(
        "token",
        help="Print an App Store Connect bearer token",
        formatter_class=SignVaultHelpFormatter,
    )
    add_token_arguments(token_parser)

    apps_parser = subparsers.add_parser(
        "apps",
        help="List App Store Connect apps to check API access",
        formatter_class=SignVaultHelpFormatter,
    )
    add_apps_arguments(apps_parser)

    sign_parser = subparsers.add_parser(
        "sign",
        help="Sign an app bundle with codesign",
        formatter_class=SignVaultHelpFormatter,
    )
    add_sign_arguments(sign_parser)

    verify_parser = subparsers.add_parser(
        "verify",
        help="Verify a code signature",
        formatter_class=SignVaultHelpFormatter,
    )
    add_verify_arguments(verify_parser)

    return parser


def main(argv=None):
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command in ("certs", "profiles", "install-profile", "prune-profiles"):
        from signvault.commands.inspect import run_inspect_command

        return run_inspect_command(args)
    elif args.command == "ci-setup":
        from signvault.commands.ci import run_ci_setup_command

        return run_ci_setup_command(args)
    elif args.command == "ci-cleanup":
        from signvault.commands.ci import run_ci_cleanup_command

        return run_ci_cleanup_command(args)
    elif args.command == "token":
        from signvault.commands.token import run_token_command

        return run_token_command(args)
    elif args.command == "apps":
        from signvault.commands.token import run_apps_command

        return run_apps_command(args)
    elif args.command == "sign":
        from signvault.commands.sign import run_sign_command

        return run_sign_command(args)
    elif args.command == "verify":
        from signvault.commands.sign import run_verify_command

        return run_verify_command(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
