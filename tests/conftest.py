import base64
import hashlib
import plistlib
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest
from asn1crypto import cms
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from signvault.src.core.context import SigningContext
from signvault.src.core.shell import CommandResult

TEAM_ID = "ABCDE12345"


@pytest.fixture(autouse=True)
def quiet_console(monkeypatch):
    monkeypatch.setenv("SIGNVAULT_QUIET", "1")


class FakeShell:
    """Scripted stand-in for ShellGateway; latest matching rule wins"""

    def __init__(self):
        self.calls: List[List[str]] = []
        self._rules: List[Tuple[List[str], Callable[[List[str]], CommandResult]]] = []

    def on(self, *prefix, exit_code=0, stdout="", stderr="", handler=None):
        if handler is None:

            def handler(command):
                return CommandResult(command, exit_code, stdout, stderr)

        self._rules.append((list(prefix), handler))

    def run(self, args, cwd=None, env=None, timeout=None, secrets=(), input=None):
        command = [str(arg) for arg in args]
        self.calls.append(command)
        for prefix, handler in reversed(self._rules):
            if command[: len(prefix)] == prefix:
                return handler(command)
        return CommandResult(command, 0)

    def commands(self, *prefix) -> List[List[str]]:
        return [c for c in self.calls if c[: len(prefix)] == list(prefix)]


def make_certificate(
    type_label: str = "Apple Distribution",
    name: str = "Acme Corp",
    team_id: str = TEAM_ID,
    not_before: Optional[datetime] = None,
    not_after: Optional[datetime] = None,
) -> Tuple[str, str]:
    """Self-signed signing certificate; returns (PEM, SHA-1 fingerprint)"""
    now = datetime.now(timezone.utc)
    not_before = not_before or now - timedelta(days=30)
    not_after = not_after or now + timedelta(days=335)
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, f"{type_label}: {name} ({team_id})"),
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, team_id),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, name),
        ]
    )
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )
    der = cert.public_bytes(serialization.Encoding.DER)
    pem = cert.public_bytes(serialization.Encoding.PEM).decode("ascii")
    return pem, hashlib.sha1(der).hexdigest().upper()


def identity_line(index: int, sha1: str, label: str) -> str:
    return f'  {index}) {sha1} "{label}"'


def make_profile_document(
    uuid: str = "11111111-2222-3333-4444-555555555555",
    name: str = "Acme App Store",
    team_id: str = TEAM_ID,
    bundle_id: str = "com.acme.app",
    get_task_allow: bool = False,
    devices: Optional[List[str]] = None,
    provisions_all_devices: bool = False,
    expiration: Optional[datetime] = None,
    certificates: Optional[List[bytes]] = None,
) -> Dict:
    now = datetime.now(timezone.utc).replace(microsecond=0, tzinfo=None)
    if expiration is not None and expiration.tzinfo is not None:
        expiration = expiration.astimezone(timezone.utc).replace(tzinfo=None)
    document = {
        "UUID": uuid,
        "Name": name,
        "TeamIdentifier": [team_id],
        "TeamName": "Acme Corp",
        "Platform": ["iOS"],
        "CreationDate": now - timedelta(days=10),
        "ExpirationDate": expiration or now + timedelta(days=300),
        "DeveloperCertificates": certificates or [b"developer-cert"],
        "Entitlements": {
            "application-identifier": f"{team_id}.{bundle_id}",
            "get-task-allow": get_task_allow,
        },
    }
    if devices is not None:
        document["ProvisionedDevices"] = devices
    if provisions_all_devices:
        document["ProvisionsAllDevices"] = True
    return document


def wrap_cms_bytes(content: bytes) -> bytes:
    """Wrap raw content in a CMS SignedData envelope like Apple ships"""
    signed_data = cms.SignedData(
        {
            "version": "v1",
            "digest_algorithms": [],
            "encap_content_info": {
                "content_type": "data",
                "content": content,
            },
            "signer_infos": [],
        }
    )
    return cms.ContentInfo({"content_type": "signed_data", "content": signed_data}).dump()


def wrap_cms(document: Dict) -> bytes:
    return wrap_cms_bytes(plistlib.dumps(document))


def make_profile_bytes(**kwargs) -> bytes:
    return wrap_cms(make_profile_document(**kwargs))


def make_profile_b64(**kwargs) -> str:
    return base64.b64encode(make_profile_bytes(**kwargs)).decode("ascii")


class FakeSecurity(FakeShell):
    """Stateful model of the macOS ``security`` tool for keychain tests"""

    def __init__(self, search_list: Optional[List[str]] = None):
        super().__init__()
        self.search = list(search_list or ["/Users/ci/Library/Keychains/login.keychain-db"])
        self.keychains: Dict[str, List[Tuple[str, str, str]]] = {}
        self.imported: Dict[str, set] = {}
        self.locked: Dict[str, bool] = {}
        # identity that importing any p12 yields: (sha1, label, pem)
        self.p12_identity: Optional[Tuple[str, str, str]] = None
        self.fail_import = False

    def run(self, args, cwd=None, env=None, timeout=None, secrets=(), input=None):
        command = [str(arg) for arg in args]
        self.calls.append(command)
        for prefix, handler in reversed(self._rules):
            if command[: len(prefix)] == prefix:
                return handler(command)
        if command[0] != "security":
            return CommandResult(command, 0)
        return getattr(self, "_" + command[1].replace("-", "_"))(command)

    def _ok(self, command, stdout=""):
        return CommandResult(command, 0, stdout, "")

    def _fail(self, command, stderr):
        return CommandResult(command, 1, "", stderr)

    def _create_keychain(self, command):
        path = command[-1]
        if path in self.keychains:
            return self._fail(
                command,
                "security: SecKeychainCreate "
                + path
                + ": A keychain with the same name already exists.",
            )
        self.keychains[path] = []
        self.imported[path] = set()
        self.locked[path] = True
        return self._ok(command)

    def _set_keychain_settings(self, command):
        return self._ok(command)

    def _unlock_keychain(self, command):
        path = command[-1]
        if path not in self.keychains:
            return self._fail(command, "security: SecKeychainUnlock: The specified keychain could not be found.")
        self.locked[path] = False
        return self._ok(command)

    def _lock_keychain(self, command):
        path = command[-1]
        if path not in self.keychains:
            return self._fail(command, "security: SecKeychainLock: The specified keychain could not be found.")
        self.locked[path] = True
        return self._ok(command)

    def _delete_keychain(self, command):
        path = command[-1]
        if path not in self.keychains:
            return self._fail(
                command, "security: SecKeychainDelete: The specified keychain could not be found."
            )
        del self.keychains[path]
        return self._ok(command)

    def _list_keychains(self, command):
        if "-s" in command:
            self.search = command[command.index("-s") + 1 :]
            return self._ok(command)
        return self._ok(command, "".join(f'    "{k}"\n' for k in self.search))

    def _default_keychain(self, command):
        return self._ok(command, f'    "{self.search[0]}"\n')

    def _import(self, command):
        if self.fail_import:
            return self._fail(command, "security: SecKeychainItemImport: MAC verification failed during PKCS12 import (wrong password?)")
        keychain = command[command.index("-k") + 1]
        if keychain not in self.keychains:
            return self._fail(command, "security: The specified keychain could not be found.")
        content = Path(command[2]).read_bytes()
        digest = hashlib.sha1(content).hexdigest()
        if digest in self.imported[keychain]:
            return self._fail(
                command,
                "security: SecKeychainItemImport: The specified item already exists in the keychain.",
            )
        self.imported[keychain].add(digest)
        if self.p12_identity:
            self.keychains[keychain].append(self.p12_identity)
        return self._ok(command, "1 identity imported.")

    def _set_key_partition_list(self, command):
        return self._ok(command)

    def _find_identity(self, command):
        keychain = command[-1] if command[-1] in self.keychains else None
        stores = [keychain] if keychain else list(self.keychains)
        lines = []
        for store in stores:
            for sha1, label, _ in self.keychains[store]:
                lines.append(identity_line(len(lines) + 1, sha1, label))
        lines.append(f"     {len(lines)} valid identities found")
        return self._ok(command, "\n".join(lines) + "\n")

    def _find_certificate(self, command):
        keychain = command[-1] if command[-1] in self.keychains else None
        stores = [keychain] if keychain else list(self.keychains)
        pems = [pem for store in stores for _, _, pem in self.keychains[store]]
        return self._ok(command, "".join(pems))

    def _delete_identity(self, command):
        name = command[command.index("-c") + 1]
        for store, identities in self.keychains.items():
            for entry in identities:
                if name in entry[1]:
                    identities.remove(entry)
                    return self._ok(command)
        return self._fail(command, "security: unable to delete identity: The specified item could not be found in the keychain.")


@pytest.fixture
def fake_shell():
    return FakeShell()


@pytest.fixture
def fake_security():
    return FakeSecurity()


@pytest.fixture
def context_factory(tmp_path):
    def build(shell) -> SigningContext:
        return SigningContext.create(
            shell=shell,
            profiles_dir=tmp_path / "Provisioning Profiles",
            keychains_dir=tmp_path / "Keychains",
        )

    return build
