"""External command execution with tolerate/fatal failure classification."""

import asyncio
import logging
from asyncio.subprocess import PIPE, Process
from typing import Optional, Sequence

from guestbox.errors import NonZeroExit, SpawnFailure
from guestbox.models import Outcome, StepResult

logger = logging.getLogger(__name__)


def render_command(command: str, args: Sequence[str]) -> str:
    """Render a command line for the log."""
    return f"$ {command} {' '.join(args)}".strip()


class CommandRunner:
    """Runs external processes from argument vectors.

    Without ``capture_output`` the child inherits this process's stdout and
    stderr so progress is visible live on the container console.
    """

    def __init__(self, log: Optional[logging.Logger] = None):
        self.logger = log or logger

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        tolerates_failure: bool = False,
        capture_output: bool = False,
    ) -> StepResult:
        """Run ``command`` to completion and classify the result.

        Raises SpawnFailure or NonZeroExit unless ``tolerates_failure`` is
        set, in which case the failure is logged and the pipeline goes on.
        """
        command_line = render_command(command, args)
        self.logger.info(command_line)

        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdout=PIPE if capture_output else None,
            )
        except OSError as e:
            if not tolerates_failure:
                raise SpawnFailure(f"Failed to start {command_line}: {e}", command_line) from e
            self.logger.warning(f"Failed to start {command_line}: {e}")
            return StepResult(exit_code=None, outcome=Outcome.TOLERATED_FAILURE)

        stdout_bytes, _ = await process.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else ""

        if process.returncode != 0:
            if not tolerates_failure:
                raise NonZeroExit(command_line, process.returncode)
            self.logger.warning(f"Command exited with code {process.returncode}: {command_line}")
            return StepResult(
                exit_code=process.returncode,
                stdout=stdout,
                outcome=Outcome.TOLERATED_FAILURE,
            )

        return StepResult(exit_code=0, stdout=stdout, outcome=Outcome.SUCCESS)

    async def run_shell(self, script: str, tolerates_failure: bool = False) -> StepResult:
        """Run ``script`` through ``sh -c``."""
        return await self.run("sh", ["-c", script], tolerates_failure=tolerates_failure)

    async def spawn(self, command: str, args: Sequence[str] = ()) -> Process:
        """Start a long-running child that inherits the console."""
        command_line = render_command(command, args)
        self.logger.info(command_line)
        try:
            return await asyncio.create_subprocess_exec(command, *args)
        except OSError as e:
            raise SpawnFailure(f"Failed to start {command_line}: {e}", command_line) from e
