"""Runtime settings for Kepixel tracking.

Settings are plain constructor arguments; ``from_env()`` fills them from
``KEPIXEL_*`` environment variables for deployments that configure the
site through the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from kepixel_analytics.snippet import DEFAULT_SCRIPT_HOST

DEFAULT_ENDPOINT = "https://anubis.kepixel.com"

_FALSE_STRINGS = {"0", "false", "no", "off", ""}


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in _FALSE_STRINGS


@dataclass
class KepixelSettings:
    write_key: str = ""
    enable_tracking: bool = True

    endpoint: str = DEFAULT_ENDPOINT
    script_host: str = DEFAULT_SCRIPT_HOST

    site_name: str = ""
    currency: str = "USD"

    # Storefront and donation integrations only report when the host has them
    commerce_enabled: bool = True
    donations_enabled: bool = False

    nonce_secret: str = ""
    batch_size: int = 20
    max_buffer_size: int = 10_000

    @property
    def tracking_active(self) -> bool:
        """Tracking needs both the enable flag and a write key."""
        return bool(self.enable_tracking and self.write_key)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "KepixelSettings":
        env = os.environ if environ is None else environ
        return cls(
            write_key=env.get("KEPIXEL_WRITE_KEY", "").strip(),
            enable_tracking=_env_bool(env.get("KEPIXEL_ENABLE_TRACKING"), True),
            endpoint=env.get("KEPIXEL_ENDPOINT", DEFAULT_ENDPOINT),
            script_host=env.get("KEPIXEL_SCRIPT_HOST", DEFAULT_SCRIPT_HOST),
            site_name=env.get("KEPIXEL_SITE_NAME", ""),
            currency=env.get("KEPIXEL_CURRENCY", "USD"),
            commerce_enabled=_env_bool(env.get("KEPIXEL_COMMERCE_ENABLED"), True),
            donations_enabled=_env_bool(env.get("KEPIXEL_DONATIONS_ENABLED"), False),
            nonce_secret=env.get("KEPIXEL_NONCE_SECRET", ""),
            batch_size=int(env.get("KEPIXEL_BATCH_SIZE", "20")),
            max_buffer_size=int(env.get("KEPIXEL_MAX_BUFFER_SIZE", "10000")),
        )
