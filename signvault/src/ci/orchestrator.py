import asyncio
from dataclasses import dataclass, field
from typing import Callable, List, Sequence, Tuple

from signvault.logger import get_console
from signvault.src.ci.export_options import ExportOptions
from signvault.src.core.context import SigningContext
from signvault.src.core.errors import NoCertificateFound
from signvault.src.core.models import Keychain, ProvisioningProfile, SigningIdentity
from signvault.src.utils.config_loader import DEFAULT_KEYCHAIN_NAME

DEFAULT_KEYCHAIN_PASSWORD = "ci-password"


@dataclass
class CIPreparedSigningContext:
    """Signing material prepared for one CI run; torn down by cleanup"""

    keychain: Keychain
    certificate: SigningIdentity
    profiles: List[ProvisioningProfile] = field(default_factory=list)

    @property
    def export_options(self) -> ExportOptions:
        return ExportOptions.for_signing(self.certificate, self.profiles)


class Saga:
    """Remembers how to undo completed steps and unwinds them in reverse"""

    def __init__(self):
        self.console = get_console()
        self._compensations: List[Tuple[str, Callable[[], object]]] = []

    def push(self, description: str, action: Callable[[], object]) -> None:
        self._compensations.append((description, action))

    def unwind(self) -> None:
        while self._compensations:
            description, action = self._compensations.pop()
            self.console.log(f"[yellow]Rolling back:[/] {description}")
            try:
                action()
            except Exception as e:
                # Keep unwinding; the original failure is what gets raised
                self.console.log(f"[red]Rollback step failed:[/] {description}: {e}")


class CISigningOrchestrator:
    """One-shot setup and cleanup of signing material on a build machine"""

    def __init__(self, context: SigningContext):
        self.context = context
        self.console = get_console()

    def setup_ci_code_signing(
        self,
        certificate_b64: str,
        certificate_password: str,
        profiles_b64: Sequence[str],
        keychain_name: str = DEFAULT_KEYCHAIN_NAME,
        keychain_password: str = DEFAULT_KEYCHAIN_PASSWORD,
    ) -> CIPreparedSigningContext:
        self.console.log("[bold]Setting up code signing for CI environment...[/]")
        keychains = self.context.keychains
        profiles_registry = self.context.profiles
        saga = Saga()

        try:
            keychain_existed = keychains.exists(keychain_name)
            keychain = keychains.create_keychain(keychain_name, keychain_password)
            if not keychain_existed:
                saga.push(
                    f"delete keychain {keychain.path}",
                    lambda: keychains.delete_keychain(keychain.path),
                )

            self.context.certificates.import_certificate_from_base64(
                certificate_b64,
                certificate_password,
                keychain=keychain.path,
                keychain_password=keychain_password,
            )

            preinstalled = {p.uuid for p in profiles_registry.list_profiles()}
            installed: List[ProvisioningProfile] = []
            for profile_b64 in profiles_b64:
                profile = profiles_registry.install_profile_from_base64(profile_b64)
                installed.append(profile)
                if profile.uuid not in preinstalled:
                    saga.push(
                        f"remove profile {profile.uuid}",
                        lambda uuid=profile.uuid: profiles_registry.remove_profile(uuid),
                    )

            certificates = self.context.certificates.list_certificates(keychain.path)
            if not certificates:
                raise NoCertificateFound(
                    "CI code signing setup",
                    f"No code signing identity in {keychain.path} after import",
                )
        except Exception:
            saga.unwind()
            raise

        certificate = certificates[0]
        self.console.log(
            f"[green]CI code signing setup complete:[/] {certificate.display_name}"
        )
        return CIPreparedSigningContext(
            keychain=keychain, certificate=certificate, profiles=installed
        )

    async def setup_ci_code_signing_async(
        self,
        certificate_b64: str,
        certificate_password: str,
        profiles_b64: Sequence[str],
        keychain_name: str = DEFAULT_KEYCHAIN_NAME,
        keychain_password: str = DEFAULT_KEYCHAIN_PASSWORD,
    ) -> CIPreparedSigningContext:
        """Same steps, run in a worker thread so asyncio callers are not blocked"""
        return await asyncio.to_thread(
            self.setup_ci_code_signing,
            certificate_b64,
            certificate_password,
            list(profiles_b64),
            keychain_name,
            keychain_password,
        )

    def cleanup_ci_code_signing(self, keychain_path: str) -> None:
        self.context.keychains.delete_keychain(keychain_path)
        self.console.log("[green]CI code signing cleanup complete[/]")
