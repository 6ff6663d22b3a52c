import hashlib
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from signvault.logger import get_console
from signvault.src.core.cert_registry import decoded_temp_file
from signvault.src.core.errors import InstallFailure, NoProfileFound, ParseFailure
from signvault.src.core.models import (
    ProfileScan,
    ProfileType,
    ProvisioningProfile,
    as_utc,
    utcnow,
)
from signvault.src.provisioning.profile_decoder import CmsProfileDecoder

PROFILE_SUFFIXES = (".mobileprovision", ".provisionprofile")

ProfileDecoder = Callable[[Path], Dict[str, Any]]


def infer_profile_type(
    provisions_all_devices: bool, get_task_allow: bool, has_devices: bool
) -> ProfileType:
    """Profile kind from its flags. Order matters: development beats ad hoc."""
    if provisions_all_devices:
        return ProfileType.ENTERPRISE
    if get_task_allow:
        return ProfileType.DEVELOPMENT
    if has_devices:
        return ProfileType.AD_HOC
    return ProfileType.APP_STORE


def strip_team_prefix(app_id: str, team_id: str) -> str:
    return app_id.replace(f"{team_id}.", "", 1)


def _require(document: Dict[str, Any], key: str, kind, path: Path):
    value = document.get(key)
    if not isinstance(value, kind):
        raise ParseFailure("Profile parsing", f"{path}: missing required field {key}")
    return value


def _optional_list(
    document: Dict[str, Any], key: str, item_kind, path: Path
) -> Optional[list]:
    """List field that may be absent. Present but not a list of item_kind is malformed."""
    value = document.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, item_kind) for v in value):
        raise ParseFailure("Profile parsing", f"{path}: malformed field {key}")
    return value


def profile_from_document(document: Dict[str, Any], path: Path) -> ProvisioningProfile:
    """Build a profile record from a decoded profile plist"""
    uuid = _require(document, "UUID", str, path)
    name = _require(document, "Name", str, path)
    team_ids = _require(document, "TeamIdentifier", list, path)
    if not team_ids or not isinstance(team_ids[0], str):
        raise ParseFailure("Profile parsing", f"{path}: missing required field TeamIdentifier")
    team_id = team_ids[0]
    team_name = _require(document, "TeamName", str, path)
    entitlements = _require(document, "Entitlements", dict, path)
    app_id = entitlements.get("application-identifier")
    if not isinstance(app_id, str):
        raise ParseFailure(
            "Profile parsing", f"{path}: missing required field application-identifier"
        )
    creation_date = _require(document, "CreationDate", datetime, path)
    expiration_date = _require(document, "ExpirationDate", datetime, path)

    devices = _optional_list(document, "ProvisionedDevices", str, path)
    platforms = _optional_list(document, "Platform", str, path) or []
    developer_certificates = (
        _optional_list(document, "DeveloperCertificates", bytes, path) or []
    )
    profile_type = infer_profile_type(
        bool(document.get("ProvisionsAllDevices", False)),
        bool(entitlements.get("get-task-allow", False)),
        devices is not None,
    )

    certificates = [hashlib.sha1(cert).hexdigest().upper() for cert in developer_certificates]

    return ProvisioningProfile(
        uuid=uuid,
        name=name,
        team_id=team_id,
        team_name=team_name,
        app_id=app_id,
        bundle_id=strip_team_prefix(app_id, team_id),
        profile_type=profile_type,
        creation_date=as_utc(creation_date),
        expiration_date=as_utc(expiration_date),
        platforms=list(platforms),
        certificates=certificates,
        devices=list(devices) if devices is not None else None,
        entitlements=entitlements,
        path=path,
    )


class ProfileRegistry:
    """Installed provisioning profiles in one directory, keyed by uuid"""

    def __init__(
        self,
        profiles_dir: Union[str, Path],
        decoder: Optional[ProfileDecoder] = None,
    ):
        self.profiles_dir = Path(profiles_dir)
        self.decoder = decoder or CmsProfileDecoder()
        self.console = get_console()

    def profile_path(self, uuid: str) -> Path:
        return self.profiles_dir / f"{uuid}.mobileprovision"

    def read_profile(self, path: Union[str, Path]) -> ProvisioningProfile:
        path = Path(path)
        try:
            document = self.decoder(path)
        except OSError as e:
            raise ParseFailure("Profile decoding", f"{path}: {e}")
        return profile_from_document(document, path)

    def _profile_files(self) -> List[Path]:
        if not self.profiles_dir.is_dir():
            return []
        return sorted(
            p
            for p in self.profiles_dir.iterdir()
            if p.is_file() and p.suffix in PROFILE_SUFFIXES
        )

    def scan_profiles(self) -> ProfileScan:
        """Decode every installed profile; broken files land in ``failures``"""
        scan = ProfileScan()
        for path in self._profile_files():
            try:
                scan.profiles.append(self.read_profile(path))
            except ParseFailure as e:
                scan.failures.append((path, e.stderr or str(e)))
        return scan

    def list_profiles(self) -> List[ProvisioningProfile]:
        return self.scan_profiles().profiles

    def find_profile(
        self,
        bundle_id: str,
        profile_type: Optional[ProfileType] = None,
        team_id: Optional[str] = None,
    ) -> Optional[ProvisioningProfile]:
        """Best valid profile for ``bundle_id``.

        An exact bundle id match wins over wildcards, and a longer wildcard
        prefix wins over a shorter one. Remaining ties keep directory order.
        """
        now = utcnow()
        candidates = [
            profile
            for profile in self.list_profiles()
            if profile.matches(bundle_id)
            and (profile_type is None or profile.profile_type == profile_type)
            and (team_id is None or profile.team_id == team_id)
            and profile.is_valid_at(now)
        ]
        if not candidates:
            return None

        def specificity(profile: ProvisioningProfile):
            if not profile.is_wildcard:
                return (1, len(profile.bundle_id))
            return (0, len(profile.bundle_id))

        # max() keeps the first of equal keys, i.e. enumeration order
        return max(candidates, key=specificity)

    def require_profile(
        self,
        bundle_id: str,
        profile_type: Optional[ProfileType] = None,
        team_id: Optional[str] = None,
    ) -> ProvisioningProfile:
        profile = self.find_profile(bundle_id, profile_type, team_id)
        if profile is None:
            raise NoProfileFound("Profile lookup", f"No valid profile matches {bundle_id}")
        return profile

    def install_profile(self, path: Union[str, Path]) -> ProvisioningProfile:
        """Copy a profile in as ``<uuid>.mobileprovision``; last install wins"""
        profile = self.read_profile(path)

        destination = self.profile_path(profile.uuid)
        try:
            self.profiles_dir.mkdir(parents=True, exist_ok=True)
            if destination.exists() and destination.samefile(path):
                self.console.log(f"[blue]Profile already installed:[/] {profile.uuid}")
            else:
                if destination.exists():
                    self.console.log(
                        f"[yellow]Replacing installed profile:[/] {profile.uuid}"
                    )
                shutil.copyfile(path, destination)
        except OSError as e:
            raise InstallFailure("Profile install", f"{destination}: {e}")

        profile.path = destination
        self.console.log(f"[green]Profile installed:[/] {profile.name} ({profile.uuid})")
        return profile

    def install_profile_from_base64(self, data: str) -> ProvisioningProfile:
        with decoded_temp_file(data, ".mobileprovision", "Profile install") as temp_path:
            return self.install_profile(temp_path)

    def remove_profile(self, uuid: str) -> bool:
        path = self.profile_path(uuid)
        if not path.exists():
            return False
        path.unlink()
        self.console.log(f"[green]Profile removed:[/] {uuid}")
        return True

    def remove_expired_profiles(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        count = 0
        for profile in self.list_profiles():
            if not profile.is_expired_at(now):
                continue
            if profile.path is not None and profile.path.exists():
                profile.path.unlink()
                self.console.log(f"[green]Removed expired profile:[/] {profile.name}")
                count += 1

        self.console.log(f"[green]Removed {count} expired profiles[/]")
        return count
