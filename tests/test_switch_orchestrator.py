"""Tests for the switch state machine."""

import os

import pytest

from src.core.shell_sync import ConfigWriteFailed
from src.core.switch_orchestrator import VersionInUse, VersionNotInstalled, InvalidVersion
from src.core.registry_client import UninstallFailed

FULL_PATH = ["idle", "validating", "linking", "syncing_shell", "reconciling_service", "verifying", "done"]


class TestSwitch:
    """Test end-to-end switching against the simulated Homebrew."""

    def test_switch_81_to_82(self, orchestrator, fake_brew, home):
        result = orchestrator.switch("8.2")

        assert result.succeeded
        assert result.states == FULL_PATH
        assert result.final_state == "done"
        assert result.previous_version == "8.1"
        assert result.warnings == []
        assert fake_brew.linked_formula() == "php@8.2"
        assert f"{fake_brew.prefix}/opt/php@8.2/bin" in (home / ".zshrc").read_text()
        assert fake_brew.services == {"php@7.4": "none", "php@8.1": "none", "php@8.2": "started"}
        assert result.active["version"] == "8.2"
        assert result.active["path_consistent"] is True

    def test_not_installed_version_rejected_without_mutation(self, orchestrator, fake_brew, home):
        result = orchestrator.switch("9.9")

        assert not result.succeeded
        assert result.states == ["idle", "validating", "failed"]
        assert result.errors[0]["code"] == "VersionNotInstalled"
        assert "phpswitch install 9.9" in result.errors[0]["remedy"]
        assert fake_brew.linked_formula() == "php@8.1"
        assert not (home / ".zshrc").exists()
        assert not fake_brew.called("brew", "link")
        assert not fake_brew.called("brew", "unlink")
        assert not fake_brew.called("brew", "services")

    def test_invalid_identifier(self, orchestrator, fake_brew):
        result = orchestrator.switch("latest")

        assert result.errors[0]["code"] == "InvalidVersion"
        assert result.final_state == "failed"
        assert fake_brew.calls == []

    def test_accepts_formula_spelling(self, orchestrator, fake_brew):
        result = orchestrator.switch("php@7.4")

        assert result.succeeded
        assert result.version == "7.4"
        assert fake_brew.linked_formula() == "php@7.4"

    def test_install_if_missing(self, orchestrator, fake_brew):
        result = orchestrator.switch("8.3", install_if_missing=True)

        assert result.succeeded
        assert "installing" in result.states
        assert "php@8.3" in fake_brew.installed
        assert fake_brew.linked_formula() == "php@8.3"

    def test_install_failure_is_terminal(self, orchestrator, fake_brew):
        result = orchestrator.switch("9.9", install_if_missing=True)

        assert result.states == ["idle", "validating", "installing", "failed"]
        assert result.errors[0]["code"] == "InstallFailed"
        assert fake_brew.linked_formula() == "php@8.1"

    def test_already_linked_skips_link(self, orchestrator, fake_brew):
        result = orchestrator.switch("8.1")

        assert result.succeeded
        assert result.states == FULL_PATH
        assert not fake_brew.called("brew", "link")

    def test_registry_failure_is_terminal(self, orchestrator, fake_brew):
        fake_brew.timeouts.add(("list",))

        result = orchestrator.switch("8.2")

        assert result.errors[0]["code"] == "RegistryUnavailable"
        assert result.final_state == "failed"
        assert fake_brew.linked_formula() == "php@8.1"


class TestLinking:
    """Test the link fallback chain."""

    def test_overwrite_fallback(self, orchestrator, fake_brew):
        fake_brew.link_failures.add("php@8.2")

        result = orchestrator.switch("8.2")

        assert result.succeeded
        assert fake_brew.called("brew", "link", "--force", "--overwrite", "php@8.2")
        assert fake_brew.linked_formula() == "php@8.2"

    def test_link_failure_is_terminal(self, orchestrator, fake_brew, home):
        fake_brew.link_failures.add("php@8.2")
        fake_brew.overwrite_failures.add("php@8.2")

        result = orchestrator.switch("8.2")

        assert result.states == ["idle", "validating", "linking", "failed"]
        assert result.errors[0]["code"] == "LinkFailed"
        assert "Permission denied" in result.errors[0]["message"]
        assert not (home / ".zshrc").exists()


class TestPartialFailures:
    """Test that later stage failures are classified, not rolled back."""

    def test_config_write_failure_keeps_link(self, orchestrator, fake_brew, monkeypatch):
        def refuse(version):
            raise ConfigWriteFailed("无法写入 ~/.zshrc: Permission denied", orchestrator.shell_sync.home / ".zshrc")
        monkeypatch.setattr(orchestrator.shell_sync, "update_config", refuse)

        result = orchestrator.switch("8.2")

        assert not result.succeeded
        assert result.states == ["idle", "validating", "linking", "syncing_shell",
                                 "reconciling_service", "verifying", "failed"]
        assert result.errors[0]["code"] == "ConfigWriteFailed"
        assert ".zshrc" in result.errors[0]["remedy"]
        assert fake_brew.linked_formula() == "php@8.2"
        assert fake_brew.services["php@8.2"] == "started"

    def test_service_timeout_is_warning(self, orchestrator, fake_brew):
        fake_brew.timeouts.add(("services", "start"))

        result = orchestrator.switch("8.2")

        assert result.succeeded
        assert result.final_state == "done"
        assert [w["code"] for w in result.warnings] == ["ServiceOperationTimedOut"]

    def test_shadowed_php_reports_path_inconsistency(self, orchestrator, fake_brew, tmp_path):
        shadow = tmp_path / "shadow"
        shadow.mkdir()
        os.symlink(fake_brew.prefix / "Cellar" / "php@7.4" / "7.4.33" / "bin" / "php", shadow / "php")
        orchestrator.resolver.search_path = os.pathsep.join([str(shadow), fake_brew.path])

        result = orchestrator.switch("8.2")

        assert result.succeeded
        assert [w["code"] for w in result.warnings] == ["PathInconsistency"]
        remedy = result.warnings[0]["remedy"]
        assert "source" in remedy
        assert "opt/php@8.2/bin" in remedy


class TestUninstall:
    """Test uninstall guard rails."""

    def test_refuses_linked_version(self, orchestrator, fake_brew):
        with pytest.raises(VersionInUse):
            orchestrator.uninstall("8.1")

        assert "php@8.1" in fake_brew.installed

    def test_force_unlinks_first(self, orchestrator, fake_brew):
        warnings = orchestrator.uninstall("8.1", force=True)

        assert warnings == []
        assert "php@8.1" not in fake_brew.installed
        assert fake_brew.linked_formula() is None
        assert fake_brew.services.get("php@8.1") is None

    def test_uninstall_other_version(self, orchestrator, fake_brew):
        orchestrator.uninstall("php@7.4")

        assert "php@7.4" not in fake_brew.installed
        assert fake_brew.called("brew", "services", "stop", "php@7.4")
        assert not fake_brew.called("brew", "unlink")

    def test_not_installed(self, orchestrator):
        with pytest.raises(VersionNotInstalled):
            orchestrator.uninstall("8.3")

    def test_invalid(self, orchestrator):
        with pytest.raises(InvalidVersion):
            orchestrator.uninstall("eight")

    def test_brew_failure(self, orchestrator, fake_brew, monkeypatch):
        monkeypatch.setattr(
            orchestrator.homebrew, "uninstall",
            lambda formula: fake_brew.respond(["brew", "bogus"]),
        )

        with pytest.raises(UninstallFailed):
            orchestrator.uninstall("7.4")


class TestTargetResolution:
    """Test explicit, project and default version selection."""

    def test_explicit_wins(self, orchestrator, tmp_path):
        (tmp_path / ".php-version").write_text("7.4\n")

        target = orchestrator.resolve_target("8.2", tmp_path)

        assert target["version"] == "8.2"
        assert target["source"] == "argument"

    def test_project_pin(self, orchestrator, tmp_path):
        (tmp_path / ".php-version").write_text("8\n")

        target = orchestrator.resolve_target(None, tmp_path)

        assert target == {"version": "8.2", "source": "project", "file": tmp_path / ".php-version"}

    def test_configured_default(self, write_config, orchestrator, tmp_path):
        write_config("DEFAULT_PHP_VERSION=7.4\n")
        empty = tmp_path / "empty"
        empty.mkdir()

        target = orchestrator.resolve_target(None, empty)

        assert target["version"] == "7.4"
        assert target["source"] == "config"


class TestAutoSwitch:
    """Test directory based switching."""

    def test_switches_to_pinned_version(self, orchestrator, fake_brew, tmp_path):
        project = tmp_path / "project"
        project.mkdir()
        (project / ".php-version").write_text("php@8.2\n")

        result = orchestrator.auto_switch(project)

        assert result.succeeded
        assert fake_brew.linked_formula() == "php@8.2"

    def test_pin_matching_linked_is_noop(self, orchestrator, fake_brew, tmp_path):
        (tmp_path / ".php-version").write_text("8.1\n")

        assert orchestrator.auto_switch(tmp_path) is None
        assert not fake_brew.called("brew", "link")

    def test_never_installs(self, orchestrator, fake_brew, tmp_path):
        (tmp_path / ".php-version").write_text("8.3\n")

        assert orchestrator.auto_switch(tmp_path) is None
        assert not fake_brew.called("brew", "install")
