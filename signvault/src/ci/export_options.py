import plistlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from signvault.logger import get_console
from signvault.src.core.models import (
    ExportMethod,
    ProvisioningProfile,
    SigningIdentity,
)


@dataclass
class ExportOptions:
    """Contents of an xcodebuild ExportOptions.plist"""

    method: ExportMethod
    team_id: Optional[str] = None
    signing_style: str = "manual"
    signing_identity: Optional[str] = None
    provisioning_profiles: Dict[str, str] = field(default_factory=dict)
    upload_bitcode: bool = False
    upload_symbols: bool = True
    compile_bitcode: bool = False
    thinning: str = "<none>"
    strip_swift_symbols: bool = True

    @classmethod
    def for_signing(
        cls, certificate: SigningIdentity, profiles: List[ProvisioningProfile]
    ) -> "ExportOptions":
        # Only the first profile decides the method; mixed sets get a warning
        method = profiles[0].profile_type.export_method if profiles else ExportMethod.APP_STORE
        methods = {p.profile_type.export_method for p in profiles}
        if len(methods) > 1:
            get_console().log(
                f"[yellow]Installed profiles disagree on export method, using {method.value}[/]"
            )

        mapping = {}
        for profile in profiles:
            mapping[profile.bundle_id] = profile.name

        return cls(
            method=method,
            team_id=certificate.team_id,
            signing_identity=certificate.common_name,
            provisioning_profiles=mapping,
        )

    def to_dict(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "method": self.method.value,
            "signingStyle": self.signing_style,
            "uploadBitcode": self.upload_bitcode,
            "uploadSymbols": self.upload_symbols,
            "compileBitcode": self.compile_bitcode,
            "thinning": self.thinning,
            "stripSwiftSymbols": self.strip_swift_symbols,
        }
        if self.team_id:
            options["teamID"] = self.team_id
        if self.signing_identity:
            options["signingCertificate"] = self.signing_identity
        if self.provisioning_profiles:
            options["provisioningProfiles"] = dict(self.provisioning_profiles)
        return options

    def to_plist(self) -> bytes:
        return plistlib.dumps(self.to_dict(), fmt=plistlib.FMT_XML)

    def write(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.write_bytes(self.to_plist())
        return path
