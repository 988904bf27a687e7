"""Shared fixtures for guestbox tests."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional, Sequence, Union

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer

from guestbox.commands import CommandRunner, render_command
from guestbox.config import RunnerConfig, Timings
from guestbox.errors import NonZeroExit
from guestbox.mock_appliance import ApplianceState, MockAppliance
from guestbox.models import Outcome, StepResult


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers every requested delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeProcess:
    def __init__(self, exit_code: int) -> None:
        self.exit_code = exit_code

    async def wait(self) -> int:
        return self.exit_code


class FakeRunner(CommandRunner):
    """Records commands instead of executing them.

    ``responses`` maps an executable name to the StepResult to return, or to
    an exception to raise (subject to ``tolerates_failure``).
    """

    def __init__(
        self,
        responses: Optional[dict[str, Union[StepResult, Exception]]] = None,
        spawn_exit_code: int = 0,
        log: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(log=log)
        self.responses = responses or {}
        self.spawn_exit_code = spawn_exit_code
        self.calls: list[tuple[str, list[str]]] = []
        self.spawned: list[tuple[str, list[str]]] = []

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        tolerates_failure: bool = False,
        capture_output: bool = False,
    ) -> StepResult:
        command_line = render_command(command, args)
        self.logger.info(command_line)
        self.calls.append((command, list(args)))

        response = self.responses.get(command, StepResult(exit_code=0))
        if isinstance(response, Exception):
            if not tolerates_failure:
                raise response
            self.logger.warning(f"Command failed: {command_line}")
            return StepResult(exit_code=1, outcome=Outcome.TOLERATED_FAILURE)
        return response

    async def spawn(self, command: str, args: Sequence[str] = ()) -> FakeProcess:
        self.logger.info(render_command(command, args))
        self.spawned.append((command, list(args)))
        return FakeProcess(self.spawn_exit_code)

    def commands(self) -> list[str]:
        return [command for command, _ in self.calls]


def failing(command: str, code: int = 1) -> NonZeroExit:
    return NonZeroExit(f"$ {command}", code)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fast_config(tmp_path) -> RunnerConfig:
    """Config with the install, restart and QEMU steps switched off."""
    return RunnerConfig(
        log_path=str(tmp_path / "logs" / "startup.log"),
        install_appliance=False,
        restart_appliance=False,
        enable_qemu=False,
        timings=Timings(post_restart_delay=0, post_configure_delay=0, http_timeout=2.0),
    )


@pytest_asyncio.fixture
async def appliance():
    """Mock appliance served on two ephemeral ports.

    Yields ``(state, setup_port, web_port)``.
    """
    state = ApplianceState()
    mock = MockAppliance(state)
    setup_server = TestServer(mock.create_setup_app(), host="127.0.0.1")
    web_server = TestServer(mock.create_web_app(), host="127.0.0.1")
    await setup_server.start_server()
    await web_server.start_server()
    try:
        yield state, setup_server.port, web_server.port
    finally:
        await web_server.close()
        await setup_server.close()


@pytest.fixture
def appliance_config(fast_config, appliance) -> RunnerConfig:
    _, setup_port, web_port = appliance
    return replace(fast_config, control_host="127.0.0.1", setup_port=setup_port, web_port=web_port)
