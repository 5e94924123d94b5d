# common/debian/apt_manager.py
# -*- coding: utf-8 -*-
import logging
import os
import subprocess
from typing import Dict, List, Optional, Union

from common.command_utils import (
    check_package_installed,
    command_exists,
    run_elevated_command,
)
from common.errors import FatalActionError, RetryExhaustedError
from common.retry_utils import retry
from startup.config_models import AppSettings


def apt_environment() -> Dict[str, str]:
    """The caller's environment (proxies, locale) with apt kept non-interactive."""
    return {**os.environ, "DEBIAN_FRONTEND": "noninteractive"}


class AptManager:
    """
    Installs the Debian packages the stages depend on with 'apt-get'.

    Package list refresh and installation are retried with the run's
    MAX_RETRIES/RETRY_DELAY, since both depend on the network.
    """

    def __init__(
        self,
        app_settings: AppSettings,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initializes the AptManager.
        Args:
            app_settings: The application settings.
            logger: An optional logging object.
        """
        self.app_settings = app_settings
        self.logger = logger or logging.getLogger(__name__)
        self._updated = False

    def _retry(self, command: List[str], description: str) -> None:
        retry(
            lambda: run_elevated_command(
                command,
                self.app_settings,
                capture_output=True,
                current_logger=self.logger,
                env=apt_environment(),
            ),
            max_attempts=self.app_settings.max_retries,
            initial_delay=self.app_settings.retry_delay,
            retry_on=(subprocess.CalledProcessError,),
            description=description,
            logger=self.logger,
        )

    def update(self) -> None:
        """
        Updates the list of available packages using 'apt-get update'.

        Raises:
            FatalActionError: apt-get is missing or every attempt failed.
        """
        if not command_exists("apt-get"):
            raise FatalActionError(
                "'apt-get' not found. Is this a Debian-based system?"
            )
        self.logger.info("Updating apt package lists via 'apt-get update'...")
        try:
            self._retry(["apt-get", "update", "-yq"], "apt-get update")
        except RetryExhaustedError as e:
            raise FatalActionError(
                f"Failed to update apt cache: {e}", exit_code=e.exit_code
            ) from e
        self._updated = True
        self.logger.info("Apt package lists updated successfully.")

    def missing_packages(self, packages: List[str]) -> List[str]:
        return [
            pkg_name
            for pkg_name in packages
            if not check_package_installed(
                pkg_name, self.app_settings, self.logger
            )
        ]

    def install(self, packages: Union[List[str], str]) -> bool:
        """
        Installs the packages that are not installed yet.

        The package lists are refreshed once per manager, and only when
        something actually needs installing.

        Args:
            packages: A single package name or a list of package names.

        Returns:
            True if anything was installed, False if all packages were
            already present.

        Raises:
            FatalActionError: installation failed after all retries.
        """
        if not isinstance(packages, list):
            packages = [packages]

        packages_to_install = self.missing_packages(packages)
        if not packages_to_install:
            self.logger.info(
                f"Packages already installed: {', '.join(packages)}"
            )
            return False

        if not self._updated:
            self.update()

        self.logger.info(
            f"Installing packages: {', '.join(packages_to_install)}"
        )
        try:
            self._retry(
                ["apt-get", "install", "-yq"] + packages_to_install,
                f"apt-get install {' '.join(packages_to_install)}",
            )
        except RetryExhaustedError as e:
            raise FatalActionError(
                f"Failed to install {', '.join(packages_to_install)}: {e}",
                exit_code=e.exit_code,
            ) from e
        self.logger.info("Packages installed successfully.")
        return True
