# startup/stages/network.py
# -*- coding: utf-8 -*-
"""
Network stage: wait for basic connectivity and, when enabled, bring up the
WireGuard VPN interface.
"""

import subprocess
import time

from common.command_utils import command_exists
from common.errors import StageActionError, TransientActionError
from common.system_utils import network_is_up, wireguard_is_active
from startup import config as static_config
from startup.stage_models import ActionResult

from .base import StageAction

NETWORK_POLL_INTERVAL = 5
VPN_SETTLE_SECONDS = 3


class NetworkAction(StageAction):
    name = "network"

    def run(self) -> ActionResult:
        self.log("Starting network initialization...")
        self.wait_for_network()

        already_configured = False
        if self.app_settings.enable_wireguard:
            self.log("WireGuard VPN is enabled in configuration")
            try:
                already_configured = self.setup_wireguard()
            except StageActionError as e:
                self.log(
                    f"WireGuard VPN setup failed, continuing without VPN: {e}",
                    "warning",
                )
            else:
                self.log("WireGuard VPN setup completed")
                test_host = self.app_settings.wireguard.test_host
                if test_host:
                    self.test_vpn_connectivity(test_host)
        else:
            self.log("WireGuard VPN is disabled in configuration")

        self.show_network_status()
        self.log("Network initialization completed successfully")
        return ActionResult(
            already_configured=already_configured,
            detail="network is up",
        )

    def wait_for_network(self) -> None:
        """
        Ping the check host every few seconds until it answers.

        Raises:
            TransientActionError: no reply within NETWORK_TIMEOUT seconds.
        """
        host = self.app_settings.network.check_host
        max_wait = self.app_settings.network.timeout
        self.log(f"Waiting for network to be available (ping {host})...")
        waited = 0
        while True:
            if network_is_up(host, self.app_settings, self.logger):
                self.log("Basic network is operational")
                return
            if waited >= max_wait:
                break
            time.sleep(NETWORK_POLL_INTERVAL)
            waited += NETWORK_POLL_INTERVAL
        raise TransientActionError(
            f"Network not available after {max_wait}s"
        )

    def install_wireguard(self) -> None:
        if command_exists("wg"):
            self.log("WireGuard is already installed")
            return
        self.log("Installing WireGuard...")
        self.apt.install(static_config.WIREGUARD_PACKAGES)

    def setup_wireguard(self) -> bool:
        """
        Bring the WireGuard interface up. Returns True if it was already up.

        Raises:
            FatalActionError: missing config file or the interface did not
                come up.
            RetryExhaustedError: `wg-quick up` kept failing.
        """
        wg = self.app_settings.wireguard
        self.log(f"Setting up WireGuard VPN interface: {wg.interface}")

        self.require(
            self.succeeds(["test", "-f", wg.config_path]),
            f"WireGuard configuration file not found: {wg.config_path}",
        )
        self.install_wireguard()

        if wireguard_is_active(wg.interface, self.app_settings, self.logger):
            self.log("WireGuard VPN is already active")
            return True

        self.log(f"Starting WireGuard interface: {wg.interface}")
        self.retry_command(
            ["wg-quick", "up", wg.interface], f"wg-quick up {wg.interface}"
        )
        time.sleep(VPN_SETTLE_SECONDS)

        self.require(
            wireguard_is_active(wg.interface, self.app_settings, self.logger),
            "WireGuard VPN failed to start properly",
        )
        self.log("WireGuard VPN started successfully")

        self.log("Enabling WireGuard at boot")
        try:
            self.elevated(["systemctl", "enable", f"wg-quick@{wg.interface}"])
        except subprocess.CalledProcessError:
            self.log(
                f"Could not enable wg-quick@{wg.interface} at boot", "warning"
            )
        return False

    def test_vpn_connectivity(self, test_host: str) -> bool:
        self.log(f"Testing VPN connectivity to {test_host}...")
        if network_is_up(test_host, self.app_settings, self.logger):
            self.log("VPN connectivity test successful")
            return True
        self.log(
            f"VPN connectivity test failed for {test_host}. This may be expected if the test host is not configured",
            "warning",
        )
        return False

    def _log_command_output(self, title: str, command) -> None:
        self.log(title)
        try:
            result = self.elevated(command, check=False, capture_output=True)
        except FileNotFoundError:
            self.log(f"  {command[0]} not available", "warning")
            return
        for line in (result.stdout or "").splitlines():
            self.log(f"  {line}")

    def show_network_status(self) -> None:
        self.log("Network Status:")
        self._log_command_output(
            "Network Interfaces:", ["ip", "-brief", "addr", "show"]
        )
        self._log_command_output(
            "Default Route:", ["ip", "route", "show", "default"]
        )

        interface = self.app_settings.wireguard.interface
        if self.app_settings.enable_wireguard and wireguard_is_active(
            interface, self.app_settings, self.logger
        ):
            self._log_command_output("WireGuard Status:", ["wg", "show", interface])
