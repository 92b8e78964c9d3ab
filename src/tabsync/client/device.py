"""Device identity helpers.

This module provides:
- platform_code: Short platform code used in device ids
- generate_device_id: New id of the form device_<platform>_<ms>_<random>
- get_device_name: Human-readable device name
- build_device_metadata: DeviceMetadata for this device
"""

from __future__ import annotations

import platform
import secrets
import socket
import string

from tabsync.client.sync.types import Clock, DeviceMetadata, now_ms

_ID_ALPHABET = string.ascii_lowercase + string.digits


def platform_code(system: str | None = None) -> str:
    """Platform code: mac, win, linux, android, ios or unknown."""
    name = (system if system is not None else platform.system()).lower()
    if "mac" in name or "darwin" in name:
        return "mac"
    if "win" in name:
        return "win"
    if "linux" in name:
        return "linux"
    if "android" in name:
        return "android"
    if "iphone" in name or "ipad" in name or "ios" in name:
        return "ios"
    return "unknown"


def generate_device_id(clock: Clock | None = None, system: str | None = None) -> str:
    """Generate a new device id.

    Returns:
        device_<platform>_<epoch ms>_<9 random base36 chars>
    """
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"device_{platform_code(system)}_{(clock or now_ms)()}_{suffix}"


def get_device_name() -> str:
    """Get the device's hostname, or a generic name."""
    try:
        return socket.gethostname() or "Unknown Device"
    except OSError:
        return "Unknown Device"


def build_device_metadata(
    device_id: str,
    device_name: str | None = None,
    browser_name: str = "unknown",
    browser_version: str = "",
    clock: Clock | None = None,
) -> DeviceMetadata:
    """Build the metadata published with this device's snapshots."""
    return DeviceMetadata(
        device_id=device_id,
        device_name=device_name or get_device_name(),
        browser_name=browser_name,
        browser_version=browser_version,
        platform=f"{platform.system()} {platform.machine()}".strip(),
        last_seen=(clock or now_ms)(),
    )
