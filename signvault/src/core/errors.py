from typing import Optional


class SignVaultError(Exception):
    """Base error carrying the failed operation and the tool's raw stderr"""

    def __init__(self, operation: str, stderr: Optional[str] = None):
        self.operation = operation
        self.stderr = (stderr or "").strip()
        if self.stderr:
            super().__init__(f"{operation} failed: {self.stderr}")
        else:
            super().__init__(f"{operation} failed")


class ShellFailure(SignVaultError):
    """A security/decode command exited non-zero"""


class ParseFailure(SignVaultError):
    """Missing required field or unparseable payload"""


class ImportFailure(SignVaultError):
    pass


class DeleteFailure(SignVaultError):
    pass


class InstallFailure(SignVaultError):
    """Copying a profile into the profiles directory failed"""


class SigningFailure(SignVaultError):
    """codesign could not sign or inspect a bundle"""


class KeychainFailure(SignVaultError):
    pass


class TokenGenerationFailure(SignVaultError):
    pass


class ConfigError(SignVaultError):
    pass


class NoCertificateFound(SignVaultError):
    def __init__(self, operation: str = "Certificate lookup", detail: str = ""):
        super().__init__(
            operation, detail or "No valid code signing certificate found"
        )


class NoProfileFound(SignVaultError):
    def __init__(self, operation: str = "Profile lookup", detail: str = ""):
        super().__init__(operation, detail or "No matching provisioning profile found")
