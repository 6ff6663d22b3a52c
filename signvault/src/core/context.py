from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from signvault.src.core.cert_registry import CertificateRegistry
from signvault.src.core.code_signer import CodeSigner
from signvault.src.core.keychain import KeychainManager
from signvault.src.core.shell import ShellGateway
from signvault.src.provisioning.profile_decoder import make_decoder
from signvault.src.provisioning.profile_registry import ProfileRegistry
from signvault.src.utils.config_loader import (
    get_keychains_dir,
    get_profile_decoder_name,
    get_profiles_dir,
    get_shell_timeout,
    load_config,
)


@dataclass
class SigningContext:
    """Everything one run needs, passed explicitly instead of shared globals"""

    shell: ShellGateway
    certificates: CertificateRegistry
    profiles: ProfileRegistry
    keychains: KeychainManager
    signer: CodeSigner
    config: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        shell: ShellGateway,
        profiles_dir: Path,
        keychains_dir: Path,
        decoder_name: str = "asn1",
        config: Optional[Dict[str, Any]] = None,
    ) -> "SigningContext":
        return cls(
            shell=shell,
            certificates=CertificateRegistry(shell),
            profiles=ProfileRegistry(profiles_dir, make_decoder(decoder_name, shell)),
            keychains=KeychainManager(shell, keychains_dir),
            signer=CodeSigner(shell),
            config=config or {},
        )

    @classmethod
    def from_config(
        cls,
        config: Optional[Dict[str, Any]] = None,
        shell: Optional[ShellGateway] = None,
    ) -> "SigningContext":
        config = load_config() if config is None else config
        shell = shell or ShellGateway(timeout=get_shell_timeout(config))
        return cls.create(
            shell=shell,
            profiles_dir=get_profiles_dir(config),
            keychains_dir=get_keychains_dir(config),
            decoder_name=get_profile_decoder_name(config),
            config=config,
        )
