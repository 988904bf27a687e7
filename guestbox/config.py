"""Runtime configuration resolved once at startup.

Every setting comes from an environment-style mapping and has a default.
The resulting objects are frozen: components read them, nothing writes them.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from typing import Any, Mapping, Optional

from guestbox.errors import ConfigError

DEFAULT_LOG_PATH = "/var/log/startup.log"

DEFAULT_INSTALL_URL = (
    "https://raw.githubusercontent.com/AdguardTeam/AdGuardHome/master/scripts/install.sh"
)

_TRUTHY = {"1", "true", "yes"}


def _flag(env: Mapping[str, str], name: str) -> bool:
    return env.get(name, "").strip().lower() in _TRUTHY


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {raw!r}")
    return value


def _commands(raw: Optional[str]) -> tuple[str, ...]:
    if raw is None:
        return ()
    return tuple(item.strip() for item in raw.split(";") if item.strip())


@dataclass(frozen=True)
class DhcpConfig:
    """DHCP server settings pushed to the appliance."""

    interface_name: str = "br0"
    gateway_ip: str = "10.99.0.1"
    subnet_mask: str = "255.255.255.0"
    range_start: str = "10.99.0.10"
    range_end: str = "10.99.0.20"
    lease_duration: int = 86400
    v6_range_start: str = "2001::1"
    v6_range_end: str = ""
    v6_lease_duration: int = 86400

    def to_payload(self) -> dict[str, Any]:
        """Body for ``POST /control/dhcp/set_config``."""
        return {
            "enabled": True,
            "interface_name": self.interface_name,
            "v4": {
                "gateway_ip": self.gateway_ip,
                "subnet_mask": self.subnet_mask,
                "range_start": self.range_start,
                "range_end": self.range_end,
                "lease_duration": self.lease_duration,
            },
            "v6": {
                "range_start": self.v6_range_start,
                "range_end": self.v6_range_end,
                "lease_duration": self.v6_lease_duration,
            },
        }


@dataclass(frozen=True)
class CloudInitConfig:
    """Guest identity and first-boot settings."""

    hostname: str = "test.xyz"
    password: str = "alpine"
    seed_image_path: str = "/root/cloudinit-seed.img"
    image_path: str = "/root/alpine.qcow2"
    commands: tuple[str, ...] = ()
    instance_id: str = "alpine-adguard"


@dataclass(frozen=True)
class Timings:
    """Attempt budgets and delays, in seconds."""

    probe_attempts: int = 30
    probe_delay: float = 2.0
    rebind_attempts: int = 20
    rebind_delay: float = 2.0
    configure_attempts: int = 10
    configure_delay: float = 3.0
    login_attempts: int = 10
    login_delay: float = 2.0
    dhcp_attempts: int = 10
    dhcp_delay: float = 3.0
    restart_wait_attempts: int = 15
    restart_wait_delay: float = 2.0
    post_restart_delay: float = 2.0
    post_configure_delay: float = 5.0
    idle_interval: float = 60.0
    http_timeout: float = 5.0


@dataclass(frozen=True)
class RunnerConfig:
    """Top-level configuration for one bootstrap run."""

    log_path: str = DEFAULT_LOG_PATH
    check_internet: bool = True
    install_appliance: bool = True
    restart_appliance: bool = True
    enable_qemu: bool = True
    admin_user: str = "admin"
    admin_password: str = "123123123"
    appliance_binary: str = "/opt/AdGuardHome/AdGuardHome"
    install_url: str = DEFAULT_INSTALL_URL
    control_host: str = "127.0.0.1"
    setup_port: int = 3000
    web_port: int = 80
    tap_interface: str = "tap0"
    host_interface: str = "veth-host"
    peer_interface: str = "veth-tap"
    bridge_name: str = "br0"
    qemu_memory: str = "256M"
    dhcp: DhcpConfig = field(default_factory=DhcpConfig)
    cloud_init: CloudInitConfig = field(default_factory=CloudInitConfig)
    timings: Timings = field(default_factory=Timings)

    @property
    def candidate_ports(self) -> list[int]:
        """Control-plane ports in probe order: unconfigured, then configured."""
        return [self.setup_port, self.web_port]

    @property
    def interfaces(self) -> list[str]:
        """Every interface the network step constructs."""
        return [self.host_interface, self.peer_interface, self.tap_interface, self.bridge_name]

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RunnerConfig":
        """Resolve the configuration from ``env`` (defaults to ``os.environ``)."""
        if env is None:
            env = os.environ

        dhcp = DhcpConfig(
            interface_name=env.get("DHCP_INTERFACE", "br0"),
            gateway_ip=env.get("DHCP_GATEWAY", "10.99.0.1"),
            subnet_mask=env.get("DHCP_SUBNET_MASK", "255.255.255.0"),
            range_start=env.get("DHCP_RANGE_START", "10.99.0.10"),
            range_end=env.get("DHCP_RANGE_END", "10.99.0.20"),
            lease_duration=_int(env, "DHCP_LEASE_DURATION", 86400),
            v6_range_start=env.get("DHCP_V6_RANGE_START", "2001::1"),
            v6_range_end=env.get("DHCP_V6_RANGE_END", ""),
            v6_lease_duration=_int(env, "DHCP_V6_LEASE_DURATION", 86400),
        )
        cloud_init = CloudInitConfig(
            hostname=env.get("CLOUDINIT_HOSTNAME", "test.xyz"),
            password=env.get("CLOUDINIT_PASSWORD", "alpine"),
            seed_image_path=env.get("CLOUDINIT_SEED_PATH", "/root/cloudinit-seed.img"),
            image_path=env.get("CLOUDINIT_IMAGE_PATH", "/root/alpine.qcow2"),
            commands=_commands(env.get("CLOUDINIT_COMMANDS")),
        )
        timings = Timings(
            post_restart_delay=_float(env, "POST_RESTART_DELAY", 2.0),
            post_configure_delay=_float(env, "POST_CONFIGURE_DELAY", 5.0),
            idle_interval=_float(env, "IDLE_LOG_INTERVAL", 60.0),
        )

        return cls(
            log_path=env.get("LOG_PATH", DEFAULT_LOG_PATH),
            check_internet=not _flag(env, "SKIP_INTERNET_CHECK"),
            install_appliance=not _flag(env, "SKIP_ADGUARD_INSTALL"),
            restart_appliance=not _flag(env, "SKIP_ADGUARD_RESTART"),
            enable_qemu=not _flag(env, "DISABLE_QEMU"),
            admin_user=env.get("ADGUARD_USER", "admin"),
            admin_password=env.get("ADGUARD_PASSWORD", "123123123"),
            appliance_binary=env.get("ADGUARD_BINARY", "/opt/AdGuardHome/AdGuardHome"),
            install_url=env.get("ADGUARD_INSTALL_URL", DEFAULT_INSTALL_URL),
            control_host=env.get("ADGUARD_HOST", "127.0.0.1"),
            setup_port=_int(env, "ADGUARD_SETUP_PORT", 3000),
            web_port=_int(env, "ADGUARD_WEB_PORT", 80),
            tap_interface=env.get("TAP_INTERFACE", "tap0"),
            host_interface=env.get("HOST_INTERFACE", "veth-host"),
            peer_interface=env.get("PEER_INTERFACE", "veth-tap"),
            bridge_name=env.get("BRIDGE_NAME", "br0"),
            qemu_memory=env.get("QEMU_MEMORY", "256M"),
            dhcp=dhcp,
            cloud_init=cloud_init,
            timings=timings,
        )

    def redacted(self) -> dict[str, Any]:
        """Plain dict view with secrets masked, for printing."""
        data = asdict(self)
        data["admin_password"] = "***"
        data["cloud_init"]["password"] = "***"
        data["cloud_init"]["commands"] = list(self.cloud_init.commands)
        return data
