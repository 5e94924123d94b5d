# startup/stages/cache.py
# -*- coding: utf-8 -*-
"""
Cache stage: layer a bcache SSD cache over the mounted iSCSI device.

The iSCSI filesystem must already be mounted; its device becomes the
bcache backing device and is remounted through /dev/bcacheN.
"""

import os
import re
import subprocess
import time
from typing import Optional

from common.file_utils import append_line_if_missing, set_fstab_entry
from common.system_utils import bcache_devices, mount_source
from startup import config as static_config
from startup.stage_models import ActionResult

from .base import StageAction

BCACHE_DEVICE_PATTERN = re.compile(r"^/dev/bcache\d+$")
WRITEBACK_PERCENT = "10"
WRITEBACK_RATE_MINIMUM = "40"


def parse_cset_uuid(super_show_output: str) -> Optional[str]:
    """Cache set UUID from `bcache-super-show` output."""
    for line in super_show_output.splitlines():
        fields = line.split()
        if len(fields) >= 2 and fields[0] == "cset.uuid":
            return fields[1]
    return None


class CacheAction(StageAction):
    name = "cache"

    dev_dir = "/dev"
    sys_block_dir = "/sys/block"

    def run(self) -> ActionResult:
        self.log("Starting cache setup...")
        self.install_bcache_tools()
        cache_was_ready = self.prepare_cache_device()
        bcache_dev, backing_was_ready = self.prepare_backing_device()
        self.attach_cache(bcache_dev)
        self.configure_cache_settings(bcache_dev)
        self.show_cache_status()
        self.log("Cache setup completed successfully")
        self.log("Note: Cache performance will improve as it warms up")
        return ActionResult(
            already_configured=cache_was_ready and backing_was_ready,
            detail=f"{bcache_dev} mounted at {self.app_settings.iscsi.mount_point}",
        )

    def install_bcache_tools(self) -> None:
        self.log("Installing bcache tools...")
        self.apt.install(static_config.BCACHE_PACKAGES)
        self.log("Loading bcache kernel module...")
        try:
            self.elevated(["modprobe", "bcache"])
        except subprocess.CalledProcessError:
            self.log(
                "Failed to load bcache module (may already be loaded)",
                "warning",
            )
        append_line_if_missing(
            static_config.MODULES_PATH, "bcache", self.app_settings, self.logger
        )

    def is_bcache_device(self, device: str) -> bool:
        if BCACHE_DEVICE_PATTERN.match(device):
            return True
        return self.succeeds(["bcache-super-show", device])

    def prepare_cache_device(self) -> bool:
        """Format the SSD as a cache device. Returns True if it already was one."""
        cache_dev = self.app_settings.cache.device
        self.log(f"Preparing cache device: {cache_dev}")
        self.require(
            self.succeeds(["test", "-b", cache_dev]),
            f"Cache device {cache_dev} does not exist",
        )
        if self.is_bcache_device(cache_dev):
            self.log(f"Device {cache_dev} is already configured as bcache cache")
            return True

        self.log(f"This will erase all data on {cache_dev}!", "warning")
        self.log(f"Formatting {cache_dev} as bcache cache device...")
        self.elevated(["make-bcache", "-C", cache_dev, "--wipe-bcache"])
        self.log("Cache device prepared successfully")
        time.sleep(2)
        return False

    def first_bcache_device(self) -> Optional[str]:
        devices = bcache_devices(self.dev_dir)
        return devices[0] if devices else None

    def prepare_backing_device(self):
        """
        Convert the iSCSI device into a bcache backing device.

        Returns:
            (bcache device, True if nothing had to be converted)
        """
        mount_point = self.app_settings.iscsi.mount_point
        self.log("Finding iSCSI backing device...")
        backing_dev = mount_source(mount_point, self.app_settings, self.logger)
        self.require(
            backing_dev is not None,
            f"Could not find mounted device at {mount_point}; the iSCSI stage must complete first",
        )
        self.log(f"Found backing device: {backing_dev}")

        if self.is_bcache_device(backing_dev):
            self.log(f"Device {backing_dev} is already configured for bcache")
            bcache_dev = (
                backing_dev
                if BCACHE_DEVICE_PATTERN.match(backing_dev)
                else self.first_bcache_device()
            )
            self.require(bcache_dev is not None, "No bcache device found")
            return bcache_dev, True

        self.log(f"Unmounting {mount_point}...")
        self.elevated(["umount", mount_point])
        self.log(f"Formatting {backing_dev} as bcache backing device...")
        self.elevated(["make-bcache", "-B", backing_dev, "--wipe-bcache"])
        self.log("Backing device prepared successfully")
        time.sleep(3)

        bcache_dev = self.first_bcache_device()
        self.require(
            bcache_dev is not None, "Failed to find bcache device after creation"
        )
        self.log(f"New bcache device: {bcache_dev}")

        self.log("Remounting as bcache device...")
        self.elevated(["mount", bcache_dev, mount_point])
        fs_type = self.app_settings.iscsi.fs_type
        set_fstab_entry(
            mount_point,
            f"{bcache_dev} {mount_point} {fs_type} _netdev,defaults 0 0",
            self.app_settings,
            self.logger,
        )
        return bcache_dev, False

    def bcache_sysfs(self, bcache_dev: str) -> str:
        return os.path.join(
            self.sys_block_dir, os.path.basename(bcache_dev), "bcache"
        )

    def write_sysfs(self, path: str, value: str) -> bool:
        result = self.elevated(
            ["tee", path], check=False, capture_output=True, cmd_input=value
        )
        return result.returncode == 0

    def attach_cache(self, bcache_dev: str) -> None:
        cache_dev = self.app_settings.cache.device
        self.log("Attaching cache device to backing device...")
        cache_uuid = parse_cset_uuid(self.output(["bcache-super-show", cache_dev]))
        self.require(
            cache_uuid is not None, f"Failed to get cache UUID from {cache_dev}"
        )
        self.log(f"Cache UUID: {cache_uuid}")

        sysfs = self.bcache_sysfs(bcache_dev)
        if os.path.isdir(os.path.join(sysfs, "cache")):
            self.log(f"Cache already attached to {bcache_dev}")
            return
        self.log(f"Attaching cache to {bcache_dev}...")
        if not self.write_sysfs(os.path.join(sysfs, "attach"), cache_uuid):
            self.log("Cache may already be attached", "warning")
            return
        self.log("Cache attached successfully")

    def configure_cache_settings(self, bcache_dev: str) -> None:
        cache = self.app_settings.cache
        sysfs = self.bcache_sysfs(bcache_dev)
        self.log("Configuring cache settings...")

        self.log(f"Setting cache mode to: {cache.mode}")
        if not self.write_sysfs(os.path.join(sysfs, "cache_mode"), cache.mode):
            self.log("Failed to set cache mode", "warning")

        cutoff_kb = cache.sequential_cutoff * 1024
        self.log(f"Setting sequential cutoff to: {cache.sequential_cutoff}MB")
        if not self.write_sysfs(
            os.path.join(sysfs, "sequential_cutoff"), str(cutoff_kb)
        ):
            self.log("Failed to set sequential cutoff", "warning")

        if cache.mode == "writeback":
            self.log("Configuring writeback settings...")
            self.write_sysfs(
                os.path.join(sysfs, "writeback_percent"), WRITEBACK_PERCENT
            )
            self.write_sysfs(
                os.path.join(sysfs, "writeback_rate_minimum"),
                WRITEBACK_RATE_MINIMUM,
            )
        self.log("Cache settings configured")

    def _read_sysfs(self, path: str) -> Optional[str]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read().strip()
        except OSError:
            return None

    def show_cache_status(self) -> None:
        self.log("Cache Status:")
        for device in bcache_devices(self.dev_dir):
            sysfs = self.bcache_sysfs(device)
            self.log(f"Device: {device}")
            for label, attribute in (
                ("Cache Mode", "cache_mode"),
                ("State", "state"),
                ("Dirty Data", "dirty_data"),
            ):
                value = self._read_sysfs(os.path.join(sysfs, attribute))
                if value is not None:
                    self.log(f"  {label}: {value}")
            attached = os.path.isdir(os.path.join(sysfs, "cache"))
            self.log(f"  Cache attached: {'Yes' if attached else 'No'}")
