"""Cloud-init NoCloud seed image generation for the guest VM."""

import logging
import tempfile
from pathlib import Path
from typing import Optional, Sequence

from guestbox.commands import CommandRunner
from guestbox.config import CloudInitConfig
from guestbox.models import BootArtifact

logger = logging.getLogger(__name__)

SEED_PACKER = "cloud-localds"


def default_commands(hostname: str) -> list[str]:
    """First-boot self-check: get a DHCP lease and verify the hostname.

    Exits non-zero with a message on the guest console if either check
    fails.
    """
    return [
        'echo "guestbox test VM is ready"',
        f"hostname {hostname}",
        f"udhcpc -i eth0 -v -x hostname:{hostname}",
        'LEASE_IP=$(ip -4 addr show dev eth0 | awk "/inet / {print $2}")',
        "CURRENT_HOSTNAME=$(hostname)",
        'if [ -z "$LEASE_IP" ]; then echo "FAIL: DHCP lease for eth0 is empty"; exit 1; fi',
        f'if [ "$CURRENT_HOSTNAME" != "{hostname}" ]; then '
        f'echo "FAIL: hostname is $CURRENT_HOSTNAME, expected {hostname}"; exit 1; fi',
        'echo "OK: DHCP lease obtained: $LEASE_IP with hostname $CURRENT_HOSTNAME"',
    ]


def escape_command(command: str) -> str:
    """Escape a command for a double-quoted YAML/shell string."""
    return command.replace("\\", "\\\\").replace('"', '\\"')


class CloudInitBuilder:
    """Renders user-data, meta-data and network-config and packs a seed image."""

    def __init__(self, config: CloudInitConfig, log: Optional[logging.Logger] = None):
        self.config = config
        self.logger = log or logger

    @property
    def commands(self) -> list[str]:
        if self.config.commands:
            return list(self.config.commands)
        return default_commands(self.config.hostname)

    def render_network_config(self) -> str:
        lines = [
            "version: 2",
            "ethernets:",
            "  eth0:",
            "    dhcp4: true",
            "    dhcp6: false",
        ]
        return "\n".join(lines) + "\n"

    def render_user_data(self, commands: Optional[Sequence[str]] = None) -> str:
        if commands is None:
            commands = self.commands
        rendered = [
            f'  - ["/bin/sh", "-c", "{escape_command(command)}"]' for command in commands
        ]
        lines = [
            "#cloud-config",
            f"hostname: {self.config.hostname}",
            f"password: {self.config.password}",
            "ssh_pwauth: true",
            "chpasswd: { expire: false }",
            "write_files:",
            "  - path: /etc/network/interfaces",
            "    permissions: '0644'",
            "    content: |",
            "      auto lo",
            "      iface lo inet loopback",
            "      auto eth0",
            "      iface eth0 inet dhcp",
            "runcmd:",
            *rendered,
        ]
        return "\n".join(lines) + "\n"

    def render_meta_data(self) -> str:
        return (
            f"instance-id: {self.config.instance_id}\n"
            f"local-hostname: {self.config.hostname}\n"
        )

    def write_documents(self, workspace: Optional[Path] = None) -> BootArtifact:
        """Write the three documents into a fresh temporary directory."""
        if workspace is None:
            workspace = Path(tempfile.mkdtemp(prefix="cloudinit-"))

        artifact = BootArtifact(
            seed_image=Path(self.config.seed_image_path),
            workspace=workspace,
            user_data=workspace / "user-data",
            meta_data=workspace / "meta-data",
            network_config=workspace / "network-config",
        )
        artifact.network_config.write_text(self.render_network_config(), encoding="utf-8")
        artifact.user_data.write_text(self.render_user_data(), encoding="utf-8")
        artifact.meta_data.write_text(self.render_meta_data(), encoding="utf-8")
        return artifact

    async def build(self, runner: CommandRunner) -> BootArtifact:
        """Render the documents and pack them into the seed image."""
        artifact = self.write_documents()
        await runner.run(
            SEED_PACKER,
            [
                "-N",
                str(artifact.network_config),
                str(artifact.seed_image),
                str(artifact.user_data),
                str(artifact.meta_data),
            ],
        )
        self.logger.info(f"Cloud-init seed image created: {artifact.seed_image}")
        return artifact
