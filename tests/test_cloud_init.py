"""Tests for cloud-init seed generation."""

import json

import pytest

from guestbox.cloud_init import SEED_PACKER, CloudInitBuilder, default_commands, escape_command
from guestbox.config import CloudInitConfig
from guestbox.errors import NonZeroExit

from conftest import FakeRunner, failing


def runcmd_entries(user_data: str) -> list[list[str]]:
    """Parse the runcmd flow sequences (valid JSON arrays) back out."""
    lines = user_data.splitlines()
    start = lines.index("runcmd:") + 1
    return [json.loads(line.strip()[2:]) for line in lines[start:] if line.strip()]


class TestUserData:

    def test_empty_command_list_falls_back_to_self_check(self):
        builder = CloudInitBuilder(CloudInitConfig(hostname="guest.test", commands=()))
        entries = runcmd_entries(builder.render_user_data())
        commands = [entry[2] for entry in entries]
        assert commands == default_commands("guest.test")
        assert any(c.startswith("udhcpc -i eth0") for c in commands)
        assert any("exit 1" in c and "guest.test" in c for c in commands)

    def test_configured_commands_are_used(self):
        builder = CloudInitBuilder(CloudInitConfig(commands=("echo one", "echo two")))
        entries = runcmd_entries(builder.render_user_data())
        assert entries == [["/bin/sh", "-c", "echo one"], ["/bin/sh", "-c", "echo two"]]

    def test_double_quotes_are_escaped(self):
        command = 'echo "hello world" && printf "%s\\n" done'
        builder = CloudInitBuilder(CloudInitConfig(commands=(command,)))
        user_data = builder.render_user_data()

        assert '\\"hello world\\"' in user_data
        assert runcmd_entries(user_data) == [["/bin/sh", "-c", command]]

    def test_document_fields(self):
        builder = CloudInitBuilder(CloudInitConfig(hostname="vm.local", password="s3cret"))
        user_data = builder.render_user_data()
        assert user_data.startswith("#cloud-config\n")
        assert "hostname: vm.local\n" in user_data
        assert "password: s3cret\n" in user_data
        assert "ssh_pwauth: true\n" in user_data
        assert "chpasswd: { expire: false }\n" in user_data
        assert "  - path: /etc/network/interfaces\n" in user_data
        assert "      iface eth0 inet dhcp\n" in user_data

    def test_deterministic(self):
        config = CloudInitConfig(commands=("echo hi",))
        assert CloudInitBuilder(config).render_user_data() == CloudInitBuilder(config).render_user_data()


def test_escape_command_handles_backslashes():
    assert escape_command('a\\b"c') == 'a\\\\b\\"c'


def test_meta_data_and_network_config():
    builder = CloudInitBuilder(CloudInitConfig(hostname="vm.local", instance_id="iid-1"))
    assert builder.render_meta_data() == "instance-id: iid-1\nlocal-hostname: vm.local\n"
    network = builder.render_network_config()
    assert "version: 2\n" in network
    assert "    dhcp4: true\n" in network
    assert "    dhcp6: false\n" in network


class TestBuild:

    @pytest.mark.asyncio
    async def test_writes_documents_and_packs_seed(self, tmp_path):
        seed = tmp_path / "seed.img"
        builder = CloudInitBuilder(CloudInitConfig(seed_image_path=str(seed)))
        runner = FakeRunner()

        artifact = await builder.build(runner)

        assert artifact.seed_image == seed
        assert artifact.workspace.name.startswith("cloudinit-")
        assert artifact.user_data.read_text().startswith("#cloud-config")
        assert artifact.meta_data.read_text().startswith("instance-id:")
        assert artifact.network_config.read_text().startswith("version: 2")
        assert runner.calls == [(
            SEED_PACKER,
            ["-N", str(artifact.network_config), str(seed), str(artifact.user_data), str(artifact.meta_data)],
        )]

    @pytest.mark.asyncio
    async def test_fresh_workspace_per_build(self, tmp_path):
        builder = CloudInitBuilder(CloudInitConfig(seed_image_path=str(tmp_path / "seed.img")))
        first = await builder.build(FakeRunner())
        second = await builder.build(FakeRunner())
        assert first.workspace != second.workspace

    @pytest.mark.asyncio
    async def test_packer_failure_propagates(self, tmp_path):
        builder = CloudInitBuilder(CloudInitConfig(seed_image_path=str(tmp_path / "seed.img")))
        runner = FakeRunner({SEED_PACKER: failing(SEED_PACKER)})
        with pytest.raises(NonZeroExit):
            await builder.build(runner)
