from pathlib import Path
from typing import Dict, List, Optional, Union

from signvault.logger import get_console
from signvault.src.core.errors import SigningFailure
from signvault.src.core.shell import ShellGateway


def parse_signing_info(output: str) -> Dict[str, str]:
    """``key=value`` lines of ``codesign -dvvv`` output; later keys win"""
    info = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip():
            info[key.strip()] = value.strip()
    return info


class CodeSigner:
    """Signs and inspects bundles with ``codesign``"""

    def __init__(self, shell: ShellGateway):
        self.shell = shell
        self.console = get_console()

    def sign_app(
        self,
        path: Union[str, Path],
        identity: str,
        entitlements: Optional[Union[str, Path]] = None,
        force: bool = True,
        keychain: Optional[str] = None,
    ) -> None:
        command: List[str] = ["codesign"]
        if force:
            command.append("--force")
        command.extend(["--sign", identity])
        if entitlements:
            command.extend(["--entitlements", str(entitlements)])
        if keychain:
            command.extend(["--keychain", keychain])
        command.extend(["--timestamp", "--options", "runtime", str(path)])

        self.console.log(f"[cyan]Signing:[/] {path}")
        self.shell.run(command).check("Code signing", SigningFailure)
        self.console.log(f"[green]App signed:[/] {path}")

    def verify_signature(self, path: Union[str, Path], deep: bool = True) -> bool:
        command = ["codesign", "--verify", "--verbose"]
        if deep:
            command.append("--deep")
        command.append(str(path))

        result = self.shell.run(command)
        if not result.success:
            self.console.log(
                f"[red]Signature verification failed:[/] {result.stderr.strip()}"
            )
        return result.success

    def signing_info(self, path: Union[str, Path]) -> Dict[str, str]:
        # codesign writes the details to stderr
        result = self.shell.run(["codesign", "-dvvv", str(path)])
        result.check("Reading signing info", SigningFailure)
        return parse_signing_info(result.combined_output)
