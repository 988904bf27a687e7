"""Tests for configuration resolution."""

import dataclasses

import pytest

from guestbox.config import RunnerConfig
from guestbox.errors import ConfigError


def test_defaults_from_empty_environment():
    config = RunnerConfig.from_env({})
    assert config == RunnerConfig()
    assert config.log_path == "/var/log/startup.log"
    assert config.check_internet and config.install_appliance
    assert config.restart_appliance and config.enable_qemu
    assert config.candidate_ports == [3000, 80]
    assert config.interfaces == ["veth-host", "veth-tap", "tap0", "br0"]
    assert config.dhcp.gateway_ip == "10.99.0.1"
    assert config.dhcp.lease_duration == 86400
    assert config.cloud_init.hostname == "test.xyz"
    assert config.cloud_init.commands == ()
    assert config.timings.dhcp_attempts == 10
    assert config.timings.dhcp_delay == 3.0


@pytest.mark.parametrize("value", ["1", "true", "YES"])
def test_skip_flags(value):
    config = RunnerConfig.from_env({
        "SKIP_INTERNET_CHECK": value,
        "SKIP_ADGUARD_INSTALL": value,
        "SKIP_ADGUARD_RESTART": value,
        "DISABLE_QEMU": value,
    })
    assert not config.check_internet
    assert not config.install_appliance
    assert not config.restart_appliance
    assert not config.enable_qemu


def test_flag_off_values():
    config = RunnerConfig.from_env({"DISABLE_QEMU": "0", "SKIP_ADGUARD_INSTALL": ""})
    assert config.enable_qemu
    assert config.install_appliance


def test_overrides():
    config = RunnerConfig.from_env({
        "LOG_PATH": "/tmp/x.log",
        "ADGUARD_WEB_PORT": "8080",
        "DHCP_RANGE_END": "10.99.0.99",
        "DHCP_V6_LEASE_DURATION": "3600",
        "CLOUDINIT_HOSTNAME": "vm.test",
        "CLOUDINIT_COMMANDS": "echo a; ; echo b ;",
        "POST_CONFIGURE_DELAY": "0.5",
    })
    assert config.log_path == "/tmp/x.log"
    assert config.candidate_ports == [3000, 8080]
    assert config.dhcp.range_end == "10.99.0.99"
    assert config.dhcp.v6_lease_duration == 3600
    assert config.cloud_init.hostname == "vm.test"
    assert config.cloud_init.commands == ("echo a", "echo b")
    assert config.timings.post_configure_delay == 0.5


@pytest.mark.parametrize(
    "env",
    [
        {"DHCP_LEASE_DURATION": "one day"},
        {"ADGUARD_SETUP_PORT": "3k"},
        {"IDLE_LOG_INTERVAL": "soon"},
        {"POST_RESTART_DELAY": "-1"},
    ],
)
def test_invalid_numbers(env):
    with pytest.raises(ConfigError):
        RunnerConfig.from_env(env)


def test_config_is_immutable():
    config = RunnerConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.log_path = "/elsewhere"
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.dhcp.gateway_ip = "10.0.0.1"


def test_redacted_masks_passwords():
    data = RunnerConfig().redacted()
    assert data["admin_password"] == "***"
    assert data["cloud_init"]["password"] == "***"
    assert data["admin_user"] == "admin"


def test_dhcp_payload_shape():
    payload = RunnerConfig().dhcp.to_payload()
    assert payload == {
        "enabled": True,
        "interface_name": "br0",
        "v4": {
            "gateway_ip": "10.99.0.1",
            "subnet_mask": "255.255.255.0",
            "range_start": "10.99.0.10",
            "range_end": "10.99.0.20",
            "lease_duration": 86400,
        },
        "v6": {"range_start": "2001::1", "range_end": "", "lease_duration": 86400},
    }
