"""Tests for the provisioning step library against a scripted runner and tmp files."""

import io
import json
from dataclasses import replace

import pytest

from vps_bootstrap import probe as probe_module
from vps_bootstrap.config import ConfigSnapshot
from vps_bootstrap.errors import ExecutionError, StepError
from vps_bootstrap.executor import Executor, Outcome
from vps_bootstrap.registry import Identity, StepContext, StepRegistry
from vps_bootstrap.steps import accounts, firewall, node, services, shell, ssh, system

UFW_WEB_ONLY = "Status: active\n\n80/tcp ALLOW Anywhere\n443/tcp ALLOW Anywhere\n"


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Point every user's home directory into tmp_path."""
    monkeypatch.setattr(
        ConfigSnapshot, "user_home", property(lambda self: tmp_path / self.USERNAME)
    )
    (tmp_path / "deploy").mkdir()
    return tmp_path / "deploy"


@pytest.fixture
def ufw_installed(monkeypatch):
    monkeypatch.setattr(probe_module.shutil, "which", lambda name: f"/usr/sbin/{name}")


def context(config, probe, runner, identity=Identity.ROOT):
    return StepContext(config, probe, identity, runner)


# ----------------------------------------------------------------
# system
# ----------------------------------------------------------------
def test_install_packages_only_installs_missing_ones(monkeypatch, runner, probe, config):
    monkeypatch.setattr(system, "package_manager", lambda: "apt-get")
    runner.on("dpkg-query", stdout="curl\tinstall ok installed\n")
    runner.on("dpkg-query -W -f=${Package}\t${Status}\n git", stdout="git\tinstall ok installed\n")

    system.install_packages(context(config, probe, runner), ["curl", "git"])

    assert runner.ran("apt-get install -y git")
    assert not runner.ran("install -y curl")


def test_install_packages_fails_when_apt_leaves_packages_missing(
    monkeypatch, runner, probe, config
):
    monkeypatch.setattr(system, "package_manager", lambda: "apt-get")

    with pytest.raises(StepError):
        system.install_packages(context(config, probe, runner), ["fail2ban"])


def test_refresh_index_stamps_a_successful_update(
    tmp_path, monkeypatch, runner, probe, config
):
    stamp = tmp_path / "state" / "apt-update-stamp"
    monkeypatch.setattr(system, "package_manager", lambda: "apt-get")
    monkeypatch.setattr(system, "BOOTSTRAP_UPDATE_STAMP", stamp)
    monkeypatch.setattr(probe_module, "BOOTSTRAP_UPDATE_STAMP", stamp)
    monkeypatch.setattr(probe_module, "APT_UPDATE_STAMP", tmp_path / "missing")
    monkeypatch.setattr(probe_module, "APT_LISTS_DIR", tmp_path / "lists")

    system.refresh_index(context(config, probe, runner))

    assert runner.ran("apt-get update")
    assert stamp.is_file()
    assert system.index_is_fresh(config, probe)


def test_failed_update_leaves_no_stamp(
    tmp_path, monkeypatch, runner, probe, config
):
    stamp = tmp_path / "state" / "apt-update-stamp"
    monkeypatch.setattr(system, "package_manager", lambda: "apt-get")
    monkeypatch.setattr(system, "BOOTSTRAP_UPDATE_STAMP", stamp)
    runner.on("apt-get update", returncode=100, stderr="Temporary failure resolving")

    with pytest.raises(ExecutionError):
        system.refresh_index(context(config, probe, runner))

    assert not stamp.exists()


def test_timezone_step(runner, probe, config):
    runner.on("timedatectl show", stdout="Etc/UTC\n")

    assert not system.timezone_matches(config, probe)
    system.set_timezone(context(config, probe, runner))
    assert runner.ran("timedatectl set-timezone Asia/Jakarta")


# ----------------------------------------------------------------
# accounts
# ----------------------------------------------------------------
def test_new_locked_account_needs_a_password(runner, probe, config):
    runner.on("passwd -S deploy", stdout="deploy L 01/01/2026 0 99999 7 -1\n")

    assert not accounts.password_set(config, probe)


def test_set_password_refuses_without_a_terminal(monkeypatch, runner, probe, config):
    monkeypatch.setattr(accounts.sys, "stdin", io.StringIO())

    with pytest.raises(StepError):
        accounts.set_password(context(config, probe, runner))
    assert runner.calls == []


def test_create_user_and_grant_sudo(runner, probe, config):
    ctx = context(config, probe, runner)

    accounts.create_user(ctx)
    accounts.grant_sudo(ctx)

    assert runner.commands() == [
        "adduser --disabled-password --gecos  deploy",
        "usermod -aG sudo deploy",
    ]


# ----------------------------------------------------------------
# services
# ----------------------------------------------------------------
def test_installer_script_must_produce_the_binary(monkeypatch, runner, probe, config):
    monkeypatch.setattr(probe_module.shutil, "which", lambda name: None)

    with pytest.raises(StepError):
        services.install_docker(context(config, probe, runner))

    assert runner.ran(f"curl -fsSL {services.DOCKER_INSTALL_URL} -o")
    assert runner.calls[-1].cmd[0] == "sh"


def test_fail2ban_satisfied_only_when_enabled_and_active(runner, probe, config):
    runner.on("is-active --quiet fail2ban", returncode=3)

    assert not services.fail2ban_running(config, probe)


# ----------------------------------------------------------------
# firewall
# ----------------------------------------------------------------
def test_firewall_matches_exact_rule_set(ufw_installed, runner, probe):
    runner.on("ufw status", stdout=UFW_WEB_ONLY)

    assert firewall.firewall_matches(ConfigSnapshot(), probe)
    assert not firewall.firewall_matches(ConfigSnapshot(ALLOW_SSH_PUBLIC=True), probe)
    assert not firewall.firewall_matches(ConfigSnapshot(ALLOW_HTTP=False), probe)


def test_configure_firewall_resets_then_allows_rules(ufw_installed, runner, probe):
    config = ConfigSnapshot(ALLOW_SSH_PUBLIC=True, SSH_PORT=2222, ALLOW_HTTPS=False)
    runner.on("ufw status", stdout="Status: active\n")

    firewall.configure_firewall(context(config, probe, runner))

    commands = runner.commands()
    assert commands[:3] == [
        "ufw --force reset",
        "ufw default deny incoming",
        "ufw default allow outgoing",
    ]
    assert "ufw allow 2222/tcp" in commands
    assert "ufw allow 80/tcp" in commands
    assert "ufw allow 443/tcp" not in commands
    assert commands.index("ufw --force enable") > commands.index("ufw allow 80/tcp")


def test_configure_firewall_fails_when_ufw_stays_inactive(ufw_installed, runner, probe):
    runner.on("ufw status", stdout="Status: inactive\n")

    with pytest.raises(StepError):
        firewall.configure_firewall(context(ConfigSnapshot(), probe, runner))


# ----------------------------------------------------------------
# node
# ----------------------------------------------------------------
def test_nvm_install_runs_as_the_user(home, runner, probe, config):
    assert not node.nvm_installed(config, probe)

    node.install_nvm(context(config, probe, runner, Identity.TARGET_USER))

    call = runner.calls[0]
    assert call.user == "deploy"
    assert "nvm-sh/nvm/v0.39.7/install.sh" in call.text
    assert call.text.startswith("set -eo pipefail")

    (home / ".nvm").mkdir()
    (home / ".nvm" / "nvm.sh").write_text("")
    assert node.nvm_installed(config, probe)


def test_pnpm_profile_block(home, runner, probe, config):
    ctx = context(config, probe, runner, Identity.TARGET_USER)

    assert not node.pnpm_profile_present(config, probe)
    node.write_pnpm_profile(ctx)

    text = (home / ".bashrc").read_text()
    assert node.PNPM_MARKER in text
    assert 'export PNPM_HOME="$HOME/.local/share/pnpm"' in text
    assert node.pnpm_profile_present(config, probe)
    assert runner.calls[-1].user is None


def test_pnpm_profile_appends_to_a_non_utf8_bashrc(home, runner, probe, config):
    original = b"export X=\xff\xfe\n"
    (home / ".bashrc").write_bytes(original)
    profile = next(step for step in node.STEPS if step.id == "pnpm_profile")
    executor = Executor(
        StepRegistry([replace(profile, requires=())]),
        config,
        probe=probe,
        runner=runner,
        show_progress=False,
    )

    report = executor.run()

    assert report.outcome_of("pnpm_profile") is Outcome.APPLIED
    data = (home / ".bashrc").read_bytes()
    assert data.startswith(original)
    assert node.PNPM_MARKER.encode() in data
    assert node.pnpm_profile_present(config, probe)


def test_ai_cli_step_checks_global_packages(runner, probe, config):
    step = node.ai_cli_step("opencode-cli@latest")
    runner.on("pnpm list -g", stdout=json.dumps([{"dependencies": {"opencode-cli": {}}}]))

    assert step.id == "ai_cli:opencode-cli"
    assert step.enabled_by == "INSTALL_AI_CLI"
    assert step.is_satisfied(config, probe)

    step.apply(context(config, probe, runner, Identity.TARGET_USER))
    assert runner.calls[-1].text.endswith("pnpm add -g opencode-cli@latest")
    assert runner.calls[-1].user == "deploy"


@pytest.mark.parametrize(
    "spec, name",
    [("opencode-cli", "opencode-cli"), ("tool@1.2", "tool"), ("@scope/tool@2", "@scope/tool")],
)
def test_package_name(spec, name):
    assert node.package_name(spec) == name


# ----------------------------------------------------------------
# shell
# ----------------------------------------------------------------
def test_tmux_snippet_substitutes_every_placeholder():
    config = ConfigSnapshot(
        USERNAME="deploy",
        TMUX_SESSION="work",
        WEB_CMD='cd web && NAME="x" pnpm dev',
    )

    snippet = shell.render_tmux_snippet(config)

    assert "__" not in snippet.replace("__tmux_bootstrap_session", "")
    assert snippet.count('"work"') == 2
    assert 'local ROOT_DIR="/home/deploy/apps"' in snippet
    assert 'local WEB="cd web && NAME=\\"x\\" pnpm dev"' in snippet


def test_tmux_autosession_is_added_once(home, runner, probe):
    config = ConfigSnapshot(USERNAME="deploy", INSTALL_TMUX=True)
    ctx = context(config, probe, runner, Identity.TARGET_USER)

    assert not shell.tmux_snippet_present(config, probe)
    shell.add_tmux_snippet(ctx)
    assert shell.tmux_snippet_present(config, probe)

    text = (home / ".bashrc").read_text()
    assert text.count(shell.TMUX_MARKER) == 1
    assert "tmux attach" in text


def test_create_project_dir_runs_as_root(runner, probe):
    config = ConfigSnapshot(USERNAME="deploy", PROJECT_DIR="/srv/apps")

    shell.create_project_dir(context(config, probe, runner, Identity.TARGET_USER))

    assert runner.commands() == ["mkdir -p /srv/apps", "chown deploy:deploy /srv/apps"]
    assert all(call.user is None for call in runner.calls)


# ----------------------------------------------------------------
# ssh
# ----------------------------------------------------------------
@pytest.fixture
def sshd_config(tmp_path, monkeypatch):
    path = tmp_path / "sshd_config"
    path.write_text("Port 22\nPasswordAuthentication yes\nPermitRootLogin yes\n")
    monkeypatch.setattr(ssh, "SSHD_CONFIG", path)
    return path


def test_harden_ssh_rewrites_validates_and_restarts(sshd_config, runner, probe):
    config = ConfigSnapshot(SSH_PORT=2222)

    assert not ssh.sshd_hardened(config, probe)
    ssh.harden_ssh(context(config, probe, runner))

    text = sshd_config.read_text()
    assert "PasswordAuthentication no" in text
    assert "PubkeyAuthentication yes" in text
    assert "PermitRootLogin no" in text
    assert "Port 2222" in text
    assert runner.ran("sshd -t")
    assert runner.commands()[-1] == "systemctl restart ssh"
    assert list(sshd_config.parent.glob("sshd_config.bak.*"))
    assert ssh.sshd_hardened(config, probe)


def test_harden_ssh_reloads_socket_activated_sshd(sshd_config, runner, probe):
    ssh.harden_ssh(context(ConfigSnapshot(SSH_PORT=2222), probe, runner))

    commands = runner.commands()
    assert commands.index("systemctl daemon-reload") < commands.index(
        "systemctl restart ssh.socket"
    )
    assert commands[-1] == "systemctl restart ssh"


def test_harden_ssh_without_socket_unit_restarts_the_service_only(
    sshd_config, runner, probe
):
    runner.on("is-enabled --quiet ssh.socket", returncode=1)

    ssh.harden_ssh(context(ConfigSnapshot(SSH_PORT=2222), probe, runner))

    assert not runner.ran("daemon-reload")
    assert not runner.ran("restart ssh.socket")
    assert runner.commands()[-1] == "systemctl restart ssh"


def test_harden_ssh_restores_backup_when_sshd_rejects_config(sshd_config, runner, probe):
    original = sshd_config.read_text()
    runner.on("sshd -t", returncode=255, stderr="Bad configuration option")

    with pytest.raises(StepError):
        ssh.harden_ssh(context(ConfigSnapshot(), probe, runner))

    assert sshd_config.read_text() == original
    assert not runner.ran("systemctl restart ssh")
