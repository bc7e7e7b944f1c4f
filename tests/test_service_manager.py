"""Tests for PHP-FPM service reconciliation."""

import pytest

from src.core.service_manager import (
    ServiceManager,
    ServiceOperationTimedOut,
    ServiceOperationFailed,
)


@pytest.fixture
def services(config_manager, homebrew):
    return ServiceManager(config_manager, homebrew)


class TestServiceNames:
    """Test version to service mapping and listing."""

    def test_service_name_for(self, services):
        assert services.service_name_for("8.2") == "php@8.2"
        assert services.service_name_for("default") == "php"

    def test_list_services_keeps_php_rows(self, services, fake_brew):
        fake_brew.services["dnsmasq"] = "started"

        listed = services.list_services()

        assert {s["name"] for s in listed} == {"php@7.4", "php@8.1", "php@8.2"}
        assert {"name": "php@8.1", "status": "started"} in listed

    def test_list_services_timeout(self, services, fake_brew):
        fake_brew.timeouts.add(("services", "list"))

        with pytest.raises(ServiceOperationTimedOut):
            services.list_services()


class TestStopOthers:
    """Test stopping every service except the kept one."""

    def test_stops_running_services(self, services, fake_brew):
        warnings = services.stop_others("8.2")

        assert warnings == []
        assert fake_brew.services["php@7.4"] == "none"
        assert fake_brew.services["php@8.1"] == "none"
        assert not fake_brew.called("brew", "services", "stop", "php@8.2")

    def test_keeps_target_running(self, services, fake_brew):
        services.stop_others("8.1")

        assert fake_brew.services["php@8.1"] == "started"
        assert fake_brew.services["php@7.4"] == "none"

    def test_not_started_counts_as_success(self, services, fake_brew):
        fake_brew.services["php@8.2"] = "error"

        warnings = services.stop_others("7.4")

        assert warnings == []
        assert fake_brew.called("brew", "services", "stop", "php@8.2")

    def test_one_failure_does_not_stop_loop(self, services, fake_brew):
        fake_brew.timeouts.add(("services", "stop", "php@7.4"))

        warnings = services.stop_others("8.2")

        assert [w["code"] for w in warnings] == ["ServiceOperationTimedOut"]
        assert fake_brew.services["php@8.1"] == "none"

    def test_listing_failure_becomes_warning(self, services, fake_brew):
        fake_brew.timeouts.add(("services", "list"))

        warnings = services.stop_others("8.2")

        assert warnings[0]["code"] == "ServiceOperationTimedOut"


class TestRestart:
    """Test restarting the target service."""

    def test_restart_reconciles(self, services, fake_brew):
        outcome = services.restart("8.2")

        assert outcome == {"service": "php@8.2", "restarted": True, "skipped": False, "warnings": []}
        assert fake_brew.services == {"php@7.4": "none", "php@8.1": "none", "php@8.2": "started"}

    def test_disabled_is_noop(self, write_config, homebrew, fake_brew):
        config = write_config("AUTO_RESTART_PHP_FPM=false\n")

        outcome = ServiceManager(config, homebrew).restart("8.2")

        assert outcome["skipped"] is True
        assert fake_brew.called("brew", "services") == []

    def test_start_timeout_raises(self, services, fake_brew):
        fake_brew.timeouts.add(("services", "start"))

        with pytest.raises(ServiceOperationTimedOut):
            services.restart("8.2")

    def test_start_failure_keeps_earlier_warnings(self, services, fake_brew, monkeypatch):
        fake_brew.timeouts.add(("services", "stop", "php@7.4"))
        monkeypatch.setattr(
            services.homebrew, "services_start",
            lambda name: fake_brew.respond(["brew", "bogus"]),
        )

        with pytest.raises(ServiceOperationFailed) as exc_info:
            services.restart("8.2")

        assert [w["code"] for w in exc_info.value.warnings] == ["ServiceOperationTimedOut"]
