import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Type, Union

from signvault.logger import get_console
from signvault.src.core.errors import ShellFailure, SignVaultError

TIMEOUT_EXIT_CODE = 124
NOT_FOUND_EXIT_CODE = 127


@dataclass
class CommandResult:
    """Outcome of a single external command"""

    command: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def combined_output(self) -> str:
        if not self.stderr:
            return self.stdout
        if not self.stdout:
            return self.stderr
        return f"{self.stdout}\n{self.stderr}"

    def stderr_contains(self, *markers: str) -> bool:
        text = self.stderr.lower()
        return any(marker.lower() in text for marker in markers)

    def check(
        self,
        operation: str,
        error_cls: Type[SignVaultError] = ShellFailure,
        tolerate: Sequence[str] = (),
    ) -> "CommandResult":
        """Raise error_cls unless the command succeeded or stderr carries an
        idempotency marker from ``tolerate``."""
        if self.success or (tolerate and self.stderr_contains(*tolerate)):
            return self
        raise error_cls(operation, self.stderr or self.stdout)


class ShellGateway:
    """Runs OS commands and hands back exit code, stdout and stderr.

    Commands are passed as argument lists so passwords and paths with
    spaces never go through a shell. Values listed in ``secrets`` are
    masked before a command is logged.
    """

    def __init__(self, timeout: Optional[float] = None, verbose: bool = False):
        self.console = get_console()
        self.timeout = timeout
        self.verbose = verbose

    def run(
        self,
        args: Sequence[Union[str, Path]],
        cwd: Optional[Union[str, Path]] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        secrets: Sequence[str] = (),
        input: Optional[str] = None,
    ) -> CommandResult:
        command = [str(arg) for arg in args]
        if self.verbose:
            self.console.log(f"[dim]Running: {self.mask(command, secrets)}[/]")

        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        started = time.monotonic()
        try:
            completed = subprocess.run(
                command,
                cwd=str(cwd) if cwd else None,
                env=run_env,
                input=input,
                capture_output=True,
                text=True,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            return CommandResult(
                command=command,
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=_as_text(e.stdout),
                stderr=f"Command timed out after {e.timeout}s",
                duration=time.monotonic() - started,
            )
        except FileNotFoundError:
            return CommandResult(
                command=command,
                exit_code=NOT_FOUND_EXIT_CODE,
                stderr=f"{command[0]}: command not found",
                duration=time.monotonic() - started,
            )

        return CommandResult(
            command=command,
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            duration=time.monotonic() - started,
        )

    @staticmethod
    def mask(command: Sequence[str], secrets: Sequence[str] = ()) -> str:
        hidden = {s for s in secrets if s}
        return " ".join("****" if part in hidden else part for part in command)


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
