"""Device information sent in the X-Kinvey-Device-Information header."""

from __future__ import annotations

import platform
from typing import Any, Protocol

SDK_NAME = "kinvey-request"

# Version of the library (reported in device information)
SDK_VERSION = "0.1.0"


class DeviceInfoProvider(Protocol):
    def to_json(self) -> dict[str, Any]: ...


class DeviceInformation:
    """Describes the Python runtime this client is running on."""

    def to_json(self) -> dict[str, Any]:
        return {
            "device": {
                "model": platform.machine(),
            },
            "platform": {
                "name": "python",
                "version": platform.python_version(),
            },
            "os": {
                "name": platform.system(),
                "version": platform.release(),
            },
            "kinveySDK": {
                "name": SDK_NAME,
                "version": SDK_VERSION,
            },
        }
