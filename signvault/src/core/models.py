from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """plistlib hands back naive datetimes that are already UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CertificateType(Enum):
    """Apple code signing certificate kinds, keyed by keychain label"""

    DEVELOPMENT = "Apple Development"
    DISTRIBUTION = "Apple Distribution"
    IOS_DEVELOPMENT = "iPhone Developer"
    IOS_DISTRIBUTION = "iPhone Distribution"
    MAC_DEVELOPMENT = "Mac Developer"
    MAC_DISTRIBUTION = "3rd Party Mac Developer Application"
    MAC_INSTALLER = "3rd Party Mac Developer Installer"
    DEVELOPER_ID_APPLICATION = "Developer ID Application"
    DEVELOPER_ID_INSTALLER = "Developer ID Installer"
    UNKNOWN = "unknown"

    @classmethod
    def from_label(cls, label: str) -> "CertificateType":
        for member in cls:
            if member.value == label:
                return member
        return cls.UNKNOWN

    @property
    def is_distribution(self) -> bool:
        return self in (
            CertificateType.DISTRIBUTION,
            CertificateType.IOS_DISTRIBUTION,
            CertificateType.MAC_DISTRIBUTION,
            CertificateType.MAC_INSTALLER,
            CertificateType.DEVELOPER_ID_APPLICATION,
            CertificateType.DEVELOPER_ID_INSTALLER,
        )


class ExportMethod(Enum):
    APP_STORE = "app-store"
    AD_HOC = "ad-hoc"
    ENTERPRISE = "enterprise"
    DEVELOPMENT = "development"
    DEVELOPER_ID = "developer-id"


class ProfileType(Enum):
    DEVELOPMENT = "Development"
    APP_STORE = "App Store"
    AD_HOC = "Ad Hoc"
    ENTERPRISE = "Enterprise"
    MAC_APP_STORE = "Mac App Store"
    DEVELOPER_ID = "Developer ID"

    @property
    def export_method(self) -> ExportMethod:
        return {
            ProfileType.DEVELOPMENT: ExportMethod.DEVELOPMENT,
            ProfileType.APP_STORE: ExportMethod.APP_STORE,
            ProfileType.MAC_APP_STORE: ExportMethod.APP_STORE,
            ProfileType.AD_HOC: ExportMethod.AD_HOC,
            ProfileType.ENTERPRISE: ExportMethod.ENTERPRISE,
            ProfileType.DEVELOPER_ID: ExportMethod.DEVELOPER_ID,
        }[self]


@dataclass
class SigningIdentity:
    """An installed certificate plus private key as reported by the keychain"""

    common_name: str
    team_id: str
    sha1_fingerprint: str
    cert_type: CertificateType = CertificateType.UNKNOWN
    team_name: str = ""
    serial_number: str = ""
    sha256_fingerprint: str = ""
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None
    keychain: Optional[str] = None

    def is_valid_at(self, now: datetime) -> bool:
        # Without a certificate body the OS "-v" listing is the only verdict
        if self.not_before is not None and now < self.not_before:
            return False
        if self.not_after is not None and now > self.not_after:
            return False
        return True

    def is_expired_at(self, now: datetime) -> bool:
        return not self.is_valid_at(now)

    @property
    def is_valid(self) -> bool:
        return self.is_valid_at(utcnow())

    @property
    def is_expired(self) -> bool:
        return self.is_expired_at(utcnow())

    @property
    def expires_in_days(self) -> Optional[int]:
        if self.not_after is None:
            return None
        return (self.not_after - utcnow()).days

    @property
    def label(self) -> str:
        return f"{self.cert_type.value}: {self.common_name} ({self.team_id})"

    @property
    def display_name(self) -> str:
        return f"{self.common_name} ({self.team_id})"


@dataclass
class ProvisioningProfile:
    uuid: str
    name: str
    team_id: str
    team_name: str
    app_id: str
    bundle_id: str
    profile_type: ProfileType
    creation_date: datetime
    expiration_date: datetime
    platforms: List[str] = field(default_factory=list)
    certificates: List[str] = field(default_factory=list)
    devices: Optional[List[str]] = None
    entitlements: Dict[str, Any] = field(default_factory=dict, repr=False)
    path: Optional[Path] = None

    def is_expired_at(self, now: datetime) -> bool:
        return now > self.expiration_date

    def is_valid_at(self, now: datetime) -> bool:
        return not self.is_expired_at(now)

    @property
    def is_expired(self) -> bool:
        return self.is_expired_at(utcnow())

    @property
    def is_valid(self) -> bool:
        return self.is_valid_at(utcnow())

    @property
    def expires_in_days(self) -> int:
        return (self.expiration_date - utcnow()).days

    @property
    def is_wildcard(self) -> bool:
        return self.bundle_id.endswith("*")

    def matches(self, bundle_id: str) -> bool:
        """Exact match, or prefix match when the profile's id ends in '*'"""
        if self.bundle_id == bundle_id:
            return True
        if self.is_wildcard:
            return bundle_id.startswith(self.bundle_id[:-1])
        return False


@dataclass
class Keychain:
    path: str
    password: str = field(repr=False)

    @property
    def name(self) -> str:
        base = Path(self.path).name
        for suffix in (".keychain-db", ".keychain"):
            if base.endswith(suffix):
                return base[: -len(suffix)]
        return base


@dataclass
class CertificateScan:
    identities: List[SigningIdentity] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class ProfileScan:
    profiles: List[ProvisioningProfile] = field(default_factory=list)
    failures: List[Tuple[Path, str]] = field(default_factory=list)
