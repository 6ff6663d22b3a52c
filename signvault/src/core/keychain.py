import threading
from pathlib import Path
from typing import List, Union

from signvault.logger import get_console
from signvault.src.core.errors import KeychainFailure, ShellFailure, SignVaultError
from signvault.src.core.models import Keychain
from signvault.src.core.shell import ShellGateway

AUTO_LOCK_TIMEOUT = 21600  # 6 hours

# The user search list is process-wide state; every read-modify-write of it
# happens under this lock. Other processes can still race us.
_SEARCH_LIST_LOCK = threading.Lock()


def parse_keychain_list(output: str) -> List[str]:
    """Parse ``security list-keychains`` output into bare paths"""
    return [
        line.strip().strip('"')
        for line in output.splitlines()
        if line.strip().strip('"')
    ]


class KeychainManager:
    """Creates, unlocks, locks and deletes ephemeral build keychains"""

    def __init__(self, shell: ShellGateway, keychains_dir: Union[str, Path]):
        self.shell = shell
        self.keychains_dir = Path(keychains_dir)
        self.console = get_console()

    def keychain_path(self, name: str) -> str:
        return str(self.keychains_dir / f"{name}.keychain-db")

    def exists(self, name: str) -> bool:
        return Path(self.keychain_path(name)).exists()

    def create_keychain(self, name: str, password: str) -> Keychain:
        path = self.keychain_path(name)
        self.console.log(f"\n[bold red]====== KEYCHAIN SETUP: {name} ======")

        self.console.log(f"[yellow]Creating keychain: {path}")
        created = self.shell.run(
            ["security", "create-keychain", "-p", password, path], secrets=[password]
        ).check("Keychain creation", KeychainFailure, tolerate=("already exists",)).success

        try:
            self._prepare_keychain(name, path, password)
        except SignVaultError:
            if created:
                self._discard_keychain(path)
            raise

        self.console.log("[bold green]====== KEYCHAIN SETUP COMPLETE ======\n")
        return Keychain(path=path, password=password)

    def _prepare_keychain(self, name: str, path: str, password: str) -> None:
        self.console.log(f"[yellow]Setting keychain settings: {name}")
        settings = self.shell.run(
            [
                "security",
                "set-keychain-settings",
                "-lut",  # lock on sleep, user lock, with timeout
                str(AUTO_LOCK_TIMEOUT),
                path,
            ]
        )
        if not settings.success:
            self.console.log(
                f"[red]Settings failed (continuing):[/] {settings.stderr.strip()}"
            )

        self.unlock_keychain(path, password)
        self.add_to_search_list(path)

    def _discard_keychain(self, path: str) -> None:
        self.console.log(f"[yellow]Removing half-created keychain:[/] {path}")
        try:
            self.delete_keychain(path)
        except SignVaultError as e:
            self.console.log(f"[red]Could not remove keychain:[/] {e}")

    def unlock_keychain(self, path: str, password: str) -> None:
        self.console.log(f"[yellow]Unlocking keychain: {path}")
        self.shell.run(
            ["security", "unlock-keychain", "-p", password, path], secrets=[password]
        ).check("Keychain unlock", KeychainFailure)

    def lock_keychain(self, path: str) -> None:
        self.shell.run(["security", "lock-keychain", path]).check(
            "Keychain lock", KeychainFailure
        )
        self.console.log(f"[green]Locked keychain:[/] {path}")

    def delete_keychain(self, path: str) -> None:
        try:
            self.remove_from_search_list(path)
        except ShellFailure as e:
            self.console.log(f"[yellow]Could not update search list:[/] {e}")

        self.shell.run(["security", "delete-keychain", path]).check(
            "Keychain deletion",
            KeychainFailure,
            tolerate=("could not be found", "not found"),
        )
        self.console.log(f"[green]Keychain deleted:[/] {path}")

    def search_list(self) -> List[str]:
        result = self.shell.run(["security", "list-keychains", "-d", "user"]).check(
            "Reading keychain search list"
        )
        return parse_keychain_list(result.stdout)

    def _write_search_list(self, keychains: List[str]) -> None:
        self.shell.run(
            ["security", "list-keychains", "-d", "user", "-s", *keychains]
        ).check("Updating keychain search list")

    def add_to_search_list(self, path: str) -> List[str]:
        """Put ``path`` at the front of the user search list if it is absent"""
        with _SEARCH_LIST_LOCK:
            keychains = self.search_list()
            if path not in keychains:
                keychains.insert(0, path)
            self._write_search_list(keychains)
            return keychains

    def remove_from_search_list(self, path: str) -> List[str]:
        with _SEARCH_LIST_LOCK:
            keychains = self.search_list()
            if path not in keychains:
                return keychains
            keychains = [k for k in keychains if k != path]
            self._write_search_list(keychains)
            return keychains

    def default_keychain(self) -> str:
        result = self.shell.run(["security", "default-keychain", "-d", "user"]).check(
            "Reading default keychain"
        )
        return result.stdout.strip().strip('"')
