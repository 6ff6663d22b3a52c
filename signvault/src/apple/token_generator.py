import base64
import json
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from signvault.logger import get_console
from signvault.src.apple.der import (
    DerError,
    der_to_p1363,
    extract_ec_private_scalar,
    pem_to_der,
)
from signvault.src.core.errors import ConfigError, TokenGenerationFailure

AUDIENCE = "appstoreconnect-v1"
TOKEN_LIFETIME = 20 * 60  # server-enforced maximum
CACHE_LIFETIME = 15 * 60  # shorter than the real expiry to absorb clock skew

Signer = Callable[[bytes, bytes], bytes]


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def sign_es256(scalar: bytes, message: bytes) -> bytes:
    """Sign with ECDSA P-256/SHA-256 via cryptography; returns a DER signature"""
    private_key = ec.derive_private_key(
        int.from_bytes(scalar, "big"), ec.SECP256R1()
    )
    return private_key.sign(message, ec.ECDSA(hashes.SHA256()))


@dataclass
class ConnectCredentials:
    """App Store Connect API key"""

    key_id: str
    issuer_id: str
    private_key: str = field(repr=False)

    @classmethod
    def from_environment(cls) -> "ConnectCredentials":
        key_id = os.environ.get("ASC_KEY_ID")
        issuer_id = os.environ.get("ASC_ISSUER_ID")
        private_key = os.environ.get("ASC_PRIVATE_KEY")
        key_path = os.environ.get("ASC_PRIVATE_KEY_PATH")
        if not private_key and key_path:
            private_key = _read_key_file(key_path)
        if not (key_id and issuer_id and private_key):
            raise ConfigError(
                "Loading App Store Connect credentials",
                "ASC_KEY_ID, ASC_ISSUER_ID and ASC_PRIVATE_KEY (or ASC_PRIVATE_KEY_PATH) must be set",
            )
        return cls(key_id=key_id, issuer_id=issuer_id, private_key=private_key)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ConnectCredentials":
        """JSON file with key_id, issuer_id and private_key"""
        try:
            data = json.loads(Path(path).read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError("Loading App Store Connect credentials", f"{path}: {e}")
        return cls.from_mapping(data, source=str(path))

    @classmethod
    def from_mapping(
        cls, data: Dict[str, Any], source: str = "config"
    ) -> "ConnectCredentials":
        private_key = data.get("private_key")
        if not private_key and data.get("private_key_path"):
            private_key = _read_key_file(data["private_key_path"])
        missing = [
            name
            for name, value in (
                ("key_id", data.get("key_id")),
                ("issuer_id", data.get("issuer_id")),
                ("private_key", private_key),
            )
            if not value
        ]
        if missing:
            raise ConfigError(
                "Loading App Store Connect credentials",
                f"{source} is missing {', '.join(missing)}",
            )
        return cls(
            key_id=data["key_id"], issuer_id=data["issuer_id"], private_key=private_key
        )


def _read_key_file(path: Union[str, Path]) -> str:
    try:
        return Path(path).expanduser().read_text()
    except OSError as e:
        raise ConfigError("Loading App Store Connect credentials", f"{path}: {e}")


@dataclass
class BearerToken:
    value: str = field(repr=False)
    issued_at: float
    expires_at: float
    cache_until: float

    def is_cache_valid(self, now: float) -> bool:
        return now < self.cache_until

    @property
    def authorization_header(self) -> str:
        return f"Bearer {self.value}"


class TokenGenerator:
    """Builds ES256 JWTs for the App Store Connect API"""

    def __init__(
        self,
        credentials: ConnectCredentials,
        clock: Callable[[], float] = time.time,
        signer: Signer = sign_es256,
    ):
        self.credentials = credentials
        self.clock = clock
        self.signer = signer

    def _private_scalar(self) -> bytes:
        try:
            return extract_ec_private_scalar(pem_to_der(self.credentials.private_key))
        except DerError as e:
            raise TokenGenerationFailure("Token generation", f"unusable private key: {e}")

    def signing_input(self, now: int) -> str:
        header = {"alg": "ES256", "kid": self.credentials.key_id, "typ": "JWT"}
        payload = {
            "iss": self.credentials.issuer_id,
            "iat": now,
            "exp": now + TOKEN_LIFETIME,
            "aud": AUDIENCE,
        }
        encoded = [
            b64url(json.dumps(part, separators=(",", ":")).encode("utf-8"))
            for part in (header, payload)
        ]
        return ".".join(encoded)

    def generate_token(self) -> BearerToken:
        now = int(self.clock())
        signing_input = self.signing_input(now)
        scalar = self._private_scalar()

        try:
            der_signature = self.signer(scalar, signing_input.encode("ascii"))
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise TokenGenerationFailure("Token generation", f"signing failed: {e}")

        signature = der_to_p1363(der_signature)
        if len(signature) != 64:
            raise TokenGenerationFailure(
                "Token generation", "signature could not be converted to r||s form"
            )

        return BearerToken(
            value=f"{signing_input}.{b64url(signature)}",
            issued_at=now,
            expires_at=now + TOKEN_LIFETIME,
            cache_until=now + CACHE_LIFETIME,
        )


class TokenCache:
    """Serves one token until its cache deadline, then mints a new one"""

    def __init__(self, generator: TokenGenerator, clock: Optional[Callable[[], float]] = None):
        self.generator = generator
        self.clock = clock or generator.clock
        self.console = get_console()
        self._lock = threading.Lock()
        self._token: Optional[BearerToken] = None

    def get_token(self) -> BearerToken:
        with self._lock:
            if self._token is not None and self._token.is_cache_valid(self.clock()):
                return self._token
            self._token = self.generator.generate_token()
            self.console.log("[blue]Generated new App Store Connect token[/]")
            return self._token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None
