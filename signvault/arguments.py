from pathlib import Path

from signvault.src.core.models import CertificateType


def add_certificate_arguments(parser):
    """Add identity listing filters to an existing parser."""
    parser.add_argument(
        "--keychain",
        type=str,
        help="Only list identities in this keychain [default: search list]",
    )
    parser.add_argument("--team", type=str, help="Only show identities for this team ID")
    parser.add_argument(
        "--type",
        dest="cert_type",
        choices=[t.value for t in CertificateType if t is not CertificateType.UNKNOWN],
        help="Only show identities of this certificate kind",
    )
    parser.add_argument(
        "--valid-only",
        action="store_true",
        help="Hide identities whose certificate is outside its validity window",
    )


def add_profile_arguments(parser):
    parser.add_argument(
        "--bundle-id",
        type=str,
        help="Show the profile that would be chosen for this bundle ID",
    )
    parser.add_argument("--team", type=str, help="Restrict to this team ID")


def add_ci_setup_arguments(parser):
    """Arguments for preparing an ephemeral CI keychain."""
    parser.add_argument(
        "--certificate-env",
        default="SIGNING_CERTIFICATE_P12",
        help="Environment variable holding the base64 .p12 [default: SIGNING_CERTIFICATE_P12]",
    )
    parser.add_argument(
        "--certificate-password-env",
        default="SIGNING_CERTIFICATE_PASSWORD",
        help="Environment variable holding the .p12 password [default: SIGNING_CERTIFICATE_PASSWORD]",
    )
    parser.add_argument(
        "--profile-env",
        action="append",
        default=[],
        metavar="VAR",
        help="Environment variable holding a base64 provisioning profile (repeatable)",
    )
    parser.add_argument(
        "--profile",
        action="append",
        default=[],
        type=Path,
        metavar="PATH",
        help="Provisioning profile file to install (repeatable)",
    )
    parser.add_argument(
        "--keychain-name",
        type=str,
        help="Name of the temporary keychain [default: config or ci-signing]",
    )
    parser.add_argument(
        "--export-options",
        type=Path,
        help="Write an ExportOptions.plist for xcodebuild to this path",
    )


def add_token_arguments(parser):
    parser.add_argument(
        "--credentials",
        type=Path,
        help="JSON file with key_id, issuer_id and private_key [default: env, then config]",
    )
    parser.add_argument(
        "--header",
        action="store_true",
        help="Print a full Authorization header instead of the bare token",
    )


def add_apps_arguments(parser):
    parser.add_argument(
        "--credentials",
        type=Path,
        help="JSON file with key_id, issuer_id and private_key [default: env, then config]",
    )
    parser.add_argument(
        "--limit", type=int, default=200, help="Maximum number of apps [default: 200]"
    )


def add_sign_arguments(parser):
    """Arguments for signing a bundle with codesign."""
    parser.add_argument("path", type=Path, help="App bundle or binary to sign")
    parser.add_argument(
        "--identity",
        required=True,
        help="Signing identity name or SHA-1 fingerprint",
    )
    parser.add_argument("--entitlements", type=Path, help="Entitlements plist")
    parser.add_argument("--keychain", type=str, help="Keychain holding the identity")


def add_verify_arguments(parser):
    parser.add_argument("path", type=Path, help="Signed app bundle or binary")
    parser.add_argument(
        "--shallow", action="store_true", help="Skip nested code (no --deep)"
    )
    parser.add_argument(
        "--info", action="store_true", help="Also print codesign -dvvv details"
    )
