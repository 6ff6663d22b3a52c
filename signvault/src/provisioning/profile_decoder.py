import plistlib
from pathlib import Path
from typing import Any, Dict
from xml.parsers.expat import ExpatError

from asn1crypto.cms import ContentInfo

from signvault.src.core.errors import ParseFailure
from signvault.src.core.shell import ShellGateway


def _load_plist(data: bytes, path: Path) -> Dict[str, Any]:
    try:
        document = plistlib.loads(data)
    except (plistlib.InvalidFileException, ExpatError, ValueError) as e:
        raise ParseFailure("Profile decoding", f"{path}: invalid plist ({e})")
    if not isinstance(document, dict):
        raise ParseFailure("Profile decoding", f"{path}: plist root is not a dict")
    return document


class CmsProfileDecoder:
    """Read a provisioning profile without using macOS security command"""

    def __call__(self, path: Path) -> Dict[str, Any]:
        try:
            content_info = ContentInfo.load(Path(path).read_bytes())
            signed_data = content_info["content"]
            # The plist is the encapsulated content of the SignedData
            plist_data = signed_data["encap_content_info"]["content"].native
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            raise ParseFailure("Profile decoding", f"{path}: not a CMS envelope ({e})")
        if not isinstance(plist_data, bytes):
            raise ParseFailure("Profile decoding", f"{path}: empty CMS payload")
        return _load_plist(plist_data, path)


class SecurityCmsProfileDecoder:
    """Decode through ``security cms -D``, the way Xcode tooling does"""

    def __init__(self, shell: ShellGateway):
        self.shell = shell

    def __call__(self, path: Path) -> Dict[str, Any]:
        result = self.shell.run(["security", "cms", "-D", "-i", str(path)])
        result.check("Profile decoding", ParseFailure)
        return _load_plist(result.stdout.encode("utf-8"), path)


def make_decoder(name: str, shell: ShellGateway):
    if name == "security":
        return SecurityCmsProfileDecoder(shell)
    return CmsProfileDecoder()
