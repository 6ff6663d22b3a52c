import base64
import binascii
import hashlib
import os
import re
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID

from signvault.logger import get_console
from signvault.src.core.errors import (
    DeleteFailure,
    ImportFailure,
    NoCertificateFound,
    ParseFailure,
)
from signvault.src.core.models import (
    CertificateScan,
    CertificateType,
    SigningIdentity,
    utcnow,
)
from signvault.src.core.shell import ShellGateway

IDENTITY_LINE = re.compile(r'^\s*\d+\)\s+([A-F0-9]+)\s+"(.+)"\s*$')
IDENTITY_LABEL = re.compile(r"^(.+?):\s+(.+?)\s+\(([A-Z0-9]+)\)$")
SUMMARY_LINE = re.compile(r"^\s*\d+\s+(valid\s+)?identit(y|ies)\s+found", re.IGNORECASE)
PEM_BLOCK = re.compile(
    r"-----BEGIN CERTIFICATE-----.+?-----END CERTIFICATE-----", re.DOTALL
)

DEFAULT_IMPORT_KEYCHAIN = "login.keychain"
ALREADY_EXISTS = ("already exists",)


def parse_identity_listing(output: str, keychain: Optional[str] = None) -> CertificateScan:
    """Parse ``security find-identity`` output.

    Lines look like ``1) <SHA1> "<type>: <name> (<teamId>)"``. Anything that
    does not parse goes to the scan's ``skipped`` channel with a reason.
    """
    scan = CertificateScan()
    for line in output.splitlines():
        if not line.strip() or SUMMARY_LINE.match(line):
            continue

        entry = IDENTITY_LINE.match(line)
        if not entry:
            scan.skipped.append((line, "not an identity line"))
            continue
        fingerprint, label = entry.groups()

        parts = IDENTITY_LABEL.match(label)
        if not parts:
            scan.skipped.append((line, f"unrecognised label: {label}"))
            continue
        type_label, common_name, team_id = parts.groups()

        scan.identities.append(
            SigningIdentity(
                common_name=common_name,
                team_id=team_id,
                team_name=common_name,
                sha1_fingerprint=fingerprint,
                cert_type=CertificateType.from_label(type_label),
                keychain=keychain,
            )
        )
    return scan


def parse_certificate_dump(output: str) -> Dict[str, x509.Certificate]:
    """Map SHA-1 fingerprint -> certificate for every PEM block in output"""
    certificates = {}
    for block in PEM_BLOCK.findall(output):
        try:
            cert = x509.load_pem_x509_certificate(block.encode())
        except ValueError:
            continue
        der = cert.public_bytes(serialization.Encoding.DER)
        certificates[hashlib.sha1(der).hexdigest().upper()] = cert
    return certificates


def _subject_value(cert: x509.Certificate, oid) -> Optional[str]:
    try:
        return cert.subject.get_attributes_for_oid(oid)[0].value
    except IndexError:
        return None


def enrich_identity(identity: SigningIdentity, cert: x509.Certificate) -> None:
    """Fill the fields the identity listing does not carry"""
    der = cert.public_bytes(serialization.Encoding.DER)
    identity.serial_number = format(cert.serial_number, "X")
    identity.sha256_fingerprint = hashlib.sha256(der).hexdigest().upper()
    identity.not_before = cert.not_valid_before_utc
    identity.not_after = cert.not_valid_after_utc
    organization = _subject_value(cert, NameOID.ORGANIZATION_NAME)
    if organization:
        identity.team_name = organization


@contextmanager
def decoded_temp_file(data: str, suffix: str, operation: str) -> Iterator[Path]:
    """Write base64 ``data`` to a temp file that is removed on every exit path"""
    try:
        payload = base64.b64decode("".join(data.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ParseFailure(operation, f"invalid base64 data: {e}")

    fd, name = tempfile.mkstemp(suffix=suffix, prefix="signvault-")
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
        yield path
    finally:
        path.unlink(missing_ok=True)


class CertificateRegistry:
    """Enumerates, imports and deletes code signing identities"""

    def __init__(self, shell: ShellGateway):
        self.shell = shell
        self.console = get_console()

    def scan_certificates(self, keychain: Optional[str] = None) -> CertificateScan:
        command = ["security", "find-identity", "-v", "-p", "codesigning"]
        if keychain:
            command.append(keychain)
        result = self.shell.run(command).check("Listing signing identities")

        scan = parse_identity_listing(result.stdout, keychain)
        if scan.identities:
            self._enrich(scan.identities, keychain)
        return scan

    def list_certificates(self, keychain: Optional[str] = None) -> List[SigningIdentity]:
        return self.scan_certificates(keychain).identities

    def _enrich(self, identities: List[SigningIdentity], keychain: Optional[str]) -> None:
        command = ["security", "find-certificate", "-a", "-p"]
        if keychain:
            command.append(keychain)
        result = self.shell.run(command)
        if not result.success:
            self.console.log(
                f"[yellow]Could not read certificate details:[/] {result.stderr.strip()}"
            )
            return

        certificates = parse_certificate_dump(result.stdout)
        for identity in identities:
            cert = certificates.get(identity.sha1_fingerprint)
            if cert is not None:
                enrich_identity(identity, cert)

    def find_certificate(
        self,
        team_id: str,
        cert_type: Optional[CertificateType] = None,
        keychain: Optional[str] = None,
    ) -> Optional[SigningIdentity]:
        """First valid identity for the team (and type) in keychain order"""
        now = utcnow()
        for identity in self.list_certificates(keychain):
            if identity.team_id != team_id:
                continue
            if cert_type is not None and identity.cert_type != cert_type:
                continue
            if identity.is_valid_at(now):
                return identity
        return None

    def require_certificate(
        self,
        team_id: str,
        cert_type: Optional[CertificateType] = None,
        keychain: Optional[str] = None,
    ) -> SigningIdentity:
        identity = self.find_certificate(team_id, cert_type, keychain)
        if identity is None:
            kind = f"{cert_type.value} " if cert_type else ""
            raise NoCertificateFound(
                "Certificate lookup",
                f"No valid {kind}certificate for team {team_id}",
            )
        return identity

    def import_certificate(
        self,
        p12_path: Union[str, Path],
        password: str,
        keychain: Optional[str] = None,
        keychain_password: str = "",
        allow_codesign: bool = True,
    ) -> None:
        target = keychain or DEFAULT_IMPORT_KEYCHAIN
        self.console.log(f"[yellow]Importing certificate into:[/] {target}")

        command = [
            "security",
            "import",
            str(p12_path),
            "-k",
            target,
            "-f",
            "pkcs12",
            "-P",
            password,
            "-T",
            "/usr/bin/codesign",
            "-T",
            "/usr/bin/security",
        ]
        if allow_codesign:
            command.append("-A")

        result = self.shell.run(command, secrets=[password])
        result.check("Certificate import", ImportFailure, tolerate=ALREADY_EXISTS)
        if not result.success:
            self.console.log("[blue]Certificate already present, nothing to import[/]")

        if allow_codesign:
            partition = self.shell.run(
                [
                    "security",
                    "set-key-partition-list",
                    "-S",
                    "apple-tool:,apple:",
                    "-s",
                    "-k",
                    keychain_password,
                    target,
                ],
                secrets=[keychain_password],
            )
            if not partition.success:
                self.console.log(
                    f"[yellow]Partition list setup failed (continuing):[/] {partition.stderr.strip()}"
                )

        self.console.log("[green]Certificate imported successfully[/]")

    def import_certificate_from_base64(
        self,
        data: str,
        password: str,
        keychain: Optional[str] = None,
        keychain_password: str = "",
        allow_codesign: bool = True,
    ) -> None:
        with decoded_temp_file(data, ".p12", "Certificate import") as p12_path:
            self.import_certificate(
                p12_path,
                password,
                keychain=keychain,
                keychain_password=keychain_password,
                allow_codesign=allow_codesign,
            )

    def delete_certificate(self, common_name: str, keychain: Optional[str] = None) -> None:
        command = ["security", "delete-identity", "-c", common_name]
        if keychain:
            command.append(keychain)
        self.shell.run(command).check("Certificate deletion", DeleteFailure)
        self.console.log(f"[green]Certificate deleted:[/] {common_name}")
