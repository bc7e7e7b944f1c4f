"""Shared fixtures: a simulated Homebrew installation and a temp home."""

import os
import re
from pathlib import Path

import pytest

from src.core.config_manager import ConfigManager
from src.core.homebrew import Homebrew
from src.core.registry_client import RegistryClient
from src.core.version_resolver import VersionResolver
from src.core.shell_sync import ShellConfigSynchronizer
from src.core.service_manager import ServiceManager
from src.core.project_locator import ProjectLocator
from src.core.switch_orchestrator import SwitchOrchestrator
from src.utils.command_runner import CommandRunner, CommandResult

CELLAR_PATTERN = re.compile(r'Cellar/(php(?:@\d+\.\d+)?)/([\d.]+)/')

FULL_VERSIONS = {
    "php": "8.4.1",
    "php@8.3": "8.3.14",
    "php@8.2": "8.2.26",
    "php@8.1": "8.1.31",
    "php@7.4": "7.4.33",
}


class FakeRunner(CommandRunner):
    """CommandRunner that answers from a table instead of spawning processes."""

    def __init__(self, responses=None):
        super().__init__()
        self.responses = dict(responses or {})
        self.calls = []

    def run(self, args, timeout=None):
        self.calls.append((list(args), timeout))
        return self.respond(list(args))

    def respond(self, args):
        response = self.responses.get(tuple(args))
        if callable(response):
            return response(args)
        if response is not None:
            return response
        return CommandResult(args, 1, stderr="unexpected command")

    def called(self, *prefix):
        """Return recorded calls whose argument list starts with prefix."""
        return [args for args, _ in self.calls if tuple(args[:len(prefix)]) == prefix]


class FakeHomebrew(FakeRunner):
    """
    Simulates a Homebrew prefix on disk.

    Installed formulae get a Cellar keg with an executable bin/php and an
    opt symlink; the linked formula owns <prefix>/bin/php.
    """

    def __init__(self, root, installed=(), linked=None, services=None):
        super().__init__()
        self.prefix = Path(root) / "homebrew"
        (self.prefix / "bin").mkdir(parents=True)
        (self.prefix / "opt").mkdir()
        self.installed = set()
        self.services = dict(services or {})
        self.search_results = {"/php@[0-9]/": "php@8.1\nphp@8.2\nphp@8.3\n", "/^php$/": "php\n"}
        self.link_failures = set()
        self.overwrite_failures = set()
        self.timeouts = set()
        for formula in installed:
            self._install(formula)
        if linked:
            self._link(linked)

    @property
    def path(self):
        return str(self.prefix / "bin")

    def _keg(self, formula):
        return self.prefix / "Cellar" / formula / FULL_VERSIONS[formula]

    def _install(self, formula):
        keg = self._keg(formula)
        (keg / "bin").mkdir(parents=True)
        (keg / "sbin").mkdir()
        php = keg / "bin" / "php"
        php.write_text("#!/bin/sh\n")
        php.chmod(0o755)
        os.symlink(os.path.relpath(keg, self.prefix / "opt"), self.prefix / "opt" / formula)
        self.installed.add(formula)
        self.services.setdefault(formula, "none")

    def _link(self, formula):
        target = os.path.relpath(self._keg(formula) / "bin" / "php", self.prefix / "bin")
        os.symlink(target, self.prefix / "bin" / "php")

    def linked_formula(self):
        link = self.prefix / "bin" / "php"
        if not link.is_symlink():
            return None
        match = CELLAR_PATTERN.search(os.readlink(link) + "/")
        return match.group(1) if match else None

    def respond(self, args):
        ok = lambda stdout="": CommandResult(args, 0, stdout=stdout)
        fail = lambda stderr: CommandResult(args, 1, stderr=stderr)

        if args[0] != "brew":
            if args[1:] == ["-v"]:
                match = CELLAR_PATTERN.search(os.path.realpath(args[0]))
                if match:
                    return ok(f"PHP {match.group(2)} (cli) (built: Nov 21 2024)\n")
            return super().respond(args)

        command = tuple(args[1:])
        for prefix in self.timeouts:
            if command[:len(prefix)] == prefix:
                return CommandResult(args, -1, timed_out=True)

        if command == ("--prefix",):
            return ok(f"{self.prefix}\n")
        if command == ("list", "--formula", "-1"):
            return ok("".join(f"{f}\n" for f in sorted(self.installed | {"git", "openssl@3"})))
        if command[0] == "search":
            return ok(self.search_results.get(command[1], ""))
        if command[0] == "link":
            formula = command[-1]
            if formula not in self.installed:
                return fail(f"Error: No such keg: {formula}")
            if formula in self.link_failures and "--overwrite" not in command:
                return fail("Error: Could not symlink bin/php\nTarget already exists.")
            if formula in self.overwrite_failures:
                return fail("Error: Permission denied @ rb_sysopen")
            if (self.prefix / "bin" / "php").is_symlink():
                (self.prefix / "bin" / "php").unlink()
            self._link(formula)
            return ok(f"Linking {formula}... 25 symlinks created.\n")
        if command[0] == "unlink":
            if self.linked_formula() == command[1]:
                (self.prefix / "bin" / "php").unlink()
            return ok(f"Unlinking {command[1]}... 0 symlinks removed.\n")
        if command[0] == "install":
            if command[1] not in FULL_VERSIONS:
                return fail(f"Error: No available formula with the name \"{command[1]}\".")
            self._install(command[1])
            return ok()
        if command[0] == "uninstall":
            self.installed.discard(command[1])
            self.services.pop(command[1], None)
            return ok(f"Uninstalling {command[1]}...\n")
        if command == ("services", "list"):
            rows = ["Name    Status  User File"]
            rows.extend(f"{name} {status}" for name, status in sorted(self.services.items()))
            return ok("\n".join(rows) + "\n")
        if command[:2] == ("services", "stop"):
            name = command[2]
            if self.services.get(name) != "started":
                return fail(f"Error: Service `{name}` is not started.")
            self.services[name] = "none"
            return ok(f"==> Successfully stopped `{name}`\n")
        if command[:2] == ("services", "start"):
            self.services[command[2]] = "started"
            return ok(f"==> Successfully started `{command[2]}`\n")
        return super().respond(args)


@pytest.fixture
def home(tmp_path):
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def config_manager(home):
    return ConfigManager(home=home)


@pytest.fixture
def write_config(config_manager):
    def _write(text):
        config_manager.config_file.write_text(text)
        config_manager.load_config()
        return config_manager
    return _write


@pytest.fixture
def fake_brew(tmp_path):
    return FakeHomebrew(
        tmp_path,
        installed=("php@7.4", "php@8.1", "php@8.2"),
        linked="php@8.1",
        services={"php@7.4": "started", "php@8.1": "started", "php@8.2": "none"},
    )


@pytest.fixture
def homebrew(fake_brew):
    return Homebrew(runner=fake_brew, prefix=fake_brew.prefix)


@pytest.fixture
def shell_env():
    return {"SHELL": "/bin/zsh"}


@pytest.fixture
def orchestrator(config_manager, homebrew, fake_brew, home, shell_env):
    return SwitchOrchestrator(
        config_manager,
        homebrew,
        RegistryClient(config_manager, homebrew),
        VersionResolver(homebrew, search_path=fake_brew.path),
        ShellConfigSynchronizer(config_manager, homebrew, home=home, env=shell_env),
        ServiceManager(config_manager, homebrew),
        ProjectLocator(),
    )
