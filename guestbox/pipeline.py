"""Ordered provisioning steps from a bare container to a booted guest."""

import asyncio
import logging
import shlex
from pathlib import Path
from typing import Optional

from guestbox.cloud_init import CloudInitBuilder
from guestbox.commands import CommandRunner
from guestbox.config import RunnerConfig
from guestbox.control_plane import ControlPlaneClient
from guestbox.errors import MissingGuestImage
from guestbox.models import ContainmentRequested, Ok, PipelineOutcome
from guestbox.retry import Sleep

logger = logging.getLogger(__name__)

HYPERVISOR = "qemu-system-x86_64"
CONNECTIVITY_TARGET = "8.8.8.8"
DHCP_SERVER_PORT = ":67"


def exit_status(returncode: int) -> int:
    """Map a child return code to a process exit status.

    asyncio reports death by signal N as -N; shells report it as 128 + N.
    """
    return returncode if returncode >= 0 else 128 - returncode


class Pipeline:
    """Runs the provisioning steps strictly in sequence.

    Each step can be switched off through the configuration. A step that
    raises aborts everything after it; ``execute`` turns that into a
    ContainmentRequested outcome instead of letting it escape.
    """

    def __init__(
        self,
        config: RunnerConfig,
        runner: Optional[CommandRunner] = None,
        control_plane: Optional[ControlPlaneClient] = None,
        builder: Optional[CloudInitBuilder] = None,
        sleep: Sleep = asyncio.sleep,
        log: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.logger = log or logger
        self.runner = runner or CommandRunner(log=self.logger)
        self.control_plane = control_plane or ControlPlaneClient(
            config, sleep=sleep, log=self.logger
        )
        self.builder = builder or CloudInitBuilder(config.cloud_init, log=self.logger)
        self._sleep = sleep
        self.current_step: Optional[str] = None

    def _begin(self, number: int, title: str) -> None:
        self.current_step = title
        self.logger.info(f"=== Step {number}: {title} ===")

    async def execute(self) -> PipelineOutcome:
        """Run every step; never raises."""
        try:
            exit_code = await self._run_steps()
        except Exception as e:
            return ContainmentRequested(
                reason=str(e) or type(e).__name__,
                error=e,
                step=self.current_step,
            )
        finally:
            await self.control_plane.close()
        return Ok(exit_code)

    async def _run_steps(self) -> int:
        await self.check_internet()
        await self.install_appliance()
        await self.create_network()
        await self.bounce_interfaces()

        if self.config.restart_appliance:
            self._begin(4, "Restart appliance")
        await self.restart_appliance()
        await self._sleep(self.config.timings.post_restart_delay)

        await self.configure_appliance()
        await self.enable_dhcp()
        await self.restart_appliance(step="Restart appliance after enabling DHCP")
        await self._sleep(self.config.timings.post_configure_delay)
        await self.check_dhcp_port()

        return await self.launch_guest()

    # -- steps ---------------------------------------------------------------

    async def check_internet(self) -> bool:
        """Best-effort connectivity probe; failure is only logged."""
        if not self.config.check_internet:
            self.logger.info("Skipping internet check (SKIP_INTERNET_CHECK=1)")
            return False
        self._begin(0, "Check internet connectivity")
        result = await self.runner.run(
            "ping", ["-c", "2", CONNECTIVITY_TARGET], tolerates_failure=True
        )
        if result.ok:
            self.logger.info("Internet is reachable")
        return result.ok

    async def install_appliance(self) -> None:
        if not self.config.install_appliance:
            self.logger.info("Skipping appliance install (SKIP_ADGUARD_INSTALL=1)")
            return
        self._begin(1, "Install appliance")
        await self.runner.run_shell(
            f"curl -s -S -L {shlex.quote(self.config.install_url)} | sh -s -- -v -r"
        )
        self.logger.info("Starting appliance after install")
        await self.runner.run(
            self.config.appliance_binary, ["-s", "start"], tolerates_failure=True
        )
        self.logger.info("Appliance installed")

    async def create_network(self) -> None:
        """Bridge a veth pair and a tap device for the guest."""
        self._begin(2, "Create internal network (veth + tap via bridge)")
        cfg = self.config
        gateway = f"{cfg.dhcp.gateway_ip}/24"
        run = self.runner.run

        await run(
            "ip",
            ["link", "add", cfg.host_interface, "type", "veth", "peer", "name", cfg.peer_interface],
            tolerates_failure=True,
        )
        await run("ip", ["addr", "add", gateway, "dev", cfg.host_interface], tolerates_failure=True)
        await run("ip", ["link", "set", cfg.host_interface, "up"])
        await run("ip", ["link", "set", cfg.peer_interface, "up"])

        await run("ip", ["tuntap", "add", "dev", cfg.tap_interface, "mode", "tap"], tolerates_failure=True)
        await run("ip", ["link", "set", cfg.tap_interface, "up"])

        await run("brctl", ["addbr", cfg.bridge_name], tolerates_failure=True)
        await run("brctl", ["addif", cfg.bridge_name, cfg.host_interface], tolerates_failure=True)
        await run("brctl", ["addif", cfg.bridge_name, cfg.tap_interface], tolerates_failure=True)
        await run("ip", ["link", "set", cfg.bridge_name, "up"])
        await run("ip", ["addr", "add", gateway, "dev", cfg.bridge_name], tolerates_failure=True)

        self.logger.info(
            f"Bridge {cfg.bridge_name} ready: {cfg.host_interface} <-> {cfg.tap_interface} ({gateway})"
        )

    async def bounce_interfaces(self) -> None:
        """Cycle every interface down and up to force re-initialization."""
        self._begin(3, "Restart network interfaces")
        for iface in self.config.interfaces:
            await self.runner.run("ip", ["link", "set", iface, "down"], tolerates_failure=True)
            await self.runner.run("ip", ["link", "set", iface, "up"], tolerates_failure=True)
        self.logger.info("Network interfaces restarted")

    async def restart_appliance(self, step: Optional[str] = None) -> None:
        """Restart the appliance and wait until its control plane answers.

        Skipping the restart also skips the readiness wait. ``step``, when
        given, becomes the current step label.
        """
        if not self.config.restart_appliance:
            self.logger.info("Skipping appliance restart (SKIP_ADGUARD_RESTART=1)")
            return
        if step:
            self.current_step = step
        await self.runner.run(
            self.config.appliance_binary, ["-s", "restart"], tolerates_failure=True
        )
        self.logger.info("Appliance restarting, waiting for the control plane...")
        await self.control_plane.wait_until_ready()

    async def configure_appliance(self) -> None:
        self._begin(5, "Configure appliance")
        await self.control_plane.authenticate()

    async def enable_dhcp(self) -> None:
        self._begin(6, "Enable DHCP")
        await self.control_plane.activate_dhcp()

    async def check_dhcp_port(self) -> bool:
        """Look for a bound DHCP server port; log-only."""
        result = await self.runner.run(
            "ss", ["-ulnp"], tolerates_failure=True, capture_output=True
        )
        if DHCP_SERVER_PORT in result.stdout:
            self.logger.info("DHCP server is listening on port 67")
            return True
        self.logger.warning("DHCP is not listening on port 67; the interface may be down")
        return False

    def hypervisor_args(self, seed_image: Path) -> list[str]:
        cfg = self.config
        return [
            "-m", cfg.qemu_memory,
            "-drive", f"file={cfg.cloud_init.image_path},if=virtio,format=qcow2",
            "-boot", "c",
            "-drive", f"file={seed_image},if=virtio,format=raw",
            "-nic", f"tap,ifname={cfg.tap_interface},script=no,downscript=no,model=virtio-net-pci",
            "-serial", "mon:stdio",
            "-display", "none",
        ]

    async def launch_guest(self) -> int:
        """Boot the guest and wait for the hypervisor to exit."""
        if not self.config.enable_qemu:
            self.logger.info("Skipping QEMU launch (DISABLE_QEMU=1)")
            return 0
        self._begin(7, "Prepare cloud-init and boot the guest")

        artifact = await self.builder.build(self.runner)
        if not Path(self.config.cloud_init.image_path).exists():
            raise MissingGuestImage(self.config.cloud_init.image_path)

        process = await self.runner.spawn(HYPERVISOR, self.hypervisor_args(artifact.seed_image))
        exit_code = await process.wait()
        self.logger.info(f"QEMU exited with code {exit_code}")
        return exit_status(exit_code)
