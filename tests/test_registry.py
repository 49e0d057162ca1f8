"""Unit tests for the step registry and the assembled step library."""

import pytest

from vps_bootstrap.config import ConfigSnapshot
from vps_bootstrap.errors import RegistryError
from vps_bootstrap.registry import Identity, Step, StepContext, StepRegistry
from vps_bootstrap.steps import build_registry


def _step(step_id, requires=(), **kwargs):
    return Step(
        id=step_id,
        description=step_id,
        is_satisfied=lambda config, probe: True,
        apply=lambda ctx: None,
        requires=tuple(requires),
        **kwargs,
    )


def test_registry_keeps_declaration_order():
    registry = StepRegistry([_step("a"), _step("b", ["a"]), _step("c", ["a", "b"])])

    assert registry.ids() == ("a", "b", "c")
    assert len(registry) == 3
    assert "b" in registry
    assert registry.index("c") == 2
    assert registry.get("b").requires == ("a",)
    with pytest.raises(KeyError):
        registry.get("zzz")


@pytest.mark.parametrize(
    "steps",
    [
        [_step("a"), _step("a")],
        [_step("a", ["missing"])],
        [_step("b", ["a"]), _step("a")],
        [_step("a", ["a"])],
    ],
    ids=["duplicate", "unknown", "out-of-order", "self"],
)
def test_registry_rejects_inconsistent_declarations(steps):
    with pytest.raises(RegistryError):
        StepRegistry(steps)


def test_step_enablement_follows_its_option():
    step = _step("tmux", enabled_by="INSTALL_TMUX")

    assert step.is_enabled(ConfigSnapshot(INSTALL_TMUX=True))
    assert not step.is_enabled(ConfigSnapshot(INSTALL_TMUX=False))
    assert _step("always").is_enabled(ConfigSnapshot())


def test_context_runs_target_user_steps_through_the_user(runner, probe, config):
    ctx = StepContext(config, probe, Identity.TARGET_USER, runner)

    ctx.run("nvm --version")
    ctx.run(["chown", "deploy:deploy", "/tmp/x"], as_root=True)

    assert runner.calls[0].user == "deploy"
    assert runner.calls[0].timeout == config.COMMAND_TIMEOUT
    assert runner.calls[1].user is None


def test_library_order_matches_provisioning_sequence():
    registry = build_registry(ConfigSnapshot(AI_CLI_PACKAGES="opencode-cli other-cli"))

    assert registry.ids() == (
        "refresh_package_index",
        "upgrade_packages",
        "set_timezone",
        "install_base_packages",
        "install_fail2ban",
        "create_user",
        "grant_sudo",
        "set_password",
        "install_docker",
        "docker_group",
        "configure_firewall",
        "enable_fail2ban",
        "install_tailscale",
        "enable_tailscaled",
        "install_nvm",
        "install_node",
        "enable_pnpm",
        "pnpm_profile",
        "ai_cli:opencode-cli",
        "ai_cli:other-cli",
        "create_project_dir",
        "tmux_autosession",
        "harden_ssh",
    )


def test_library_declares_tolerant_and_user_steps():
    registry = build_registry(ConfigSnapshot())

    tolerant = {step.id for step in registry if step.tolerate_failure}
    assert tolerant == {"docker_group", "enable_tailscaled"}
    assert registry.get("set_password").interactive
    assert registry.get("install_node").identity is Identity.TARGET_USER
    assert registry.get("configure_firewall").identity is Identity.ROOT


def test_versioned_ai_cli_specs_share_one_step():
    registry = build_registry(
        ConfigSnapshot(AI_CLI_PACKAGES="opencode-cli@1.0 opencode-cli @scope/tool@2")
    )

    ai_steps = [step_id for step_id in registry.ids() if step_id.startswith("ai_cli:")]
    assert ai_steps == ["ai_cli:opencode-cli", "ai_cli:@scope/tool"]
