"""Tests for linked/active version resolution."""

import os

from src.core.homebrew import Homebrew
from src.core.version_resolver import VersionResolver, read_linked_version

from conftest import FakeHomebrew


def make_shadow(tmp_path, fake_brew, formula):
    """Put a php from another keg in a directory of its own."""
    shadow = tmp_path / "shadow"
    shadow.mkdir()
    os.symlink(fake_brew.prefix / "Cellar" / formula / "7.4.33" / "bin" / "php", shadow / "php")
    return shadow


class TestLinkedVersion:
    """Test reading the <prefix>/bin/php symlink."""

    def test_versioned_link(self, fake_brew):
        assert read_linked_version(fake_brew.prefix) == "8.1"

    def test_no_link(self, fake_brew):
        (fake_brew.prefix / "bin" / "php").unlink()
        assert read_linked_version(fake_brew.prefix) == "none"

    def test_default_link(self, tmp_path):
        brew = FakeHomebrew(tmp_path, installed=("php",), linked="php")
        assert read_linked_version(brew.prefix) == "default"

    def test_foreign_link(self, tmp_path):
        (tmp_path / "bin").mkdir()
        os.symlink("/usr/bin/true", tmp_path / "bin" / "php")
        assert read_linked_version(tmp_path) == "none"


class TestActiveVersion:
    """Test PATH-based active version detection."""

    def test_consistent(self, homebrew, fake_brew):
        active = VersionResolver(homebrew, search_path=fake_brew.path).get_active_version()

        assert active["version"] == "8.1"
        assert active["full_version"] == "8.1.31"
        assert active["linked"] == "8.1"
        assert active["expected"] == "8.1"
        assert active["path_consistent"] is True
        assert active["binary"] == str(fake_brew.prefix / "bin" / "php")

    def test_shadowed_binary(self, tmp_path, homebrew, fake_brew):
        shadow = make_shadow(tmp_path, fake_brew, "php@7.4")
        search_path = os.pathsep.join([str(shadow), fake_brew.path])

        active = VersionResolver(homebrew, search_path=search_path).get_active_version()

        assert active["version"] == "7.4"
        assert active["linked"] == "8.1"
        assert active["path_consistent"] is False

    def test_no_php_on_path(self, tmp_path, homebrew):
        empty = tmp_path / "empty"
        empty.mkdir()

        active = VersionResolver(homebrew, search_path=str(empty)).get_active_version()

        assert active["version"] == "unknown"
        assert active["binary"] is None
        assert active["path_consistent"] is False

    def test_broken_binary(self, tmp_path, homebrew):
        broken = tmp_path / "broken"
        broken.mkdir()
        php = broken / "php"
        php.write_text("#!/bin/sh\nexit 1\n")
        php.chmod(0o755)

        active = VersionResolver(homebrew, search_path=str(broken)).get_active_version()

        assert active["version"] == "unknown"
        assert active["binary"] == str(php)

    def test_default_expected_version(self, tmp_path):
        brew = FakeHomebrew(tmp_path, installed=("php", "php@8.2"), linked="php")
        resolver = VersionResolver(Homebrew(runner=brew, prefix=brew.prefix), search_path=brew.path)

        active = resolver.get_active_version()

        assert active["linked"] == "default"
        assert active["expected"] == "8.4"
        assert active["path_consistent"] is True


class TestPathBinaries:
    """Test enumeration of every php on PATH."""

    def test_lists_in_path_order(self, tmp_path, homebrew, fake_brew):
        shadow = make_shadow(tmp_path, fake_brew, "php@7.4")
        search_path = os.pathsep.join([str(shadow), fake_brew.path, str(shadow)])

        found = VersionResolver(homebrew, search_path=search_path).find_path_binaries()

        assert [item["version"] for item in found] == ["7.4", "8.1"]
        assert found[0]["full_version"] == "7.4.33"
