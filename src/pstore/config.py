"""
Connection settings for one PowerStore appliance.

Settings come from CLI flags or from a TOML file laid out like the
sample config below (the same block a Telegraf-style agent would carry).
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, replace
from typing import Optional

DEFAULT_APPLIANCE_ID = "A1"
DEFAULT_ENTITY = "space_metrics_by_appliance"
DEFAULT_INTERVAL = "Five_Mins"
DEFAULT_TIMEOUT_SECONDS = 10.0

SAMPLE_CONFIG = """\
[[inputs.powerstore]]
  ## The PowerStore REST API URL in the format "schema://host:port"
  url = "https://10.230.24.9/api/rest"
  username = "admin"
  password = "Password123!"

  ## Appliance to report on and the metrics rollup interval
  # appliance_id = "A1"
  # interval = "Five_Mins"

  ## Per-request timeout in seconds
  # timeout = 10.0

  ## Optional TLS Config
  # tls_ca = "/etc/pstore/ca.pem"
  # tls_cert = "/etc/pstore/cert.pem"
  # tls_key = "/etc/pstore/key.pem"
  ## Use SSL but skip chain & host verification
  # insecure_skip_verify = false
"""


@dataclass(frozen=True)
class ConnectionConfig:
    url: str
    username: str = ""
    password: str = ""

    tls_ca: Optional[str] = None
    tls_cert: Optional[str] = None
    tls_key: Optional[str] = None
    insecure_skip_verify: bool = False

    appliance_id: str = DEFAULT_APPLIANCE_ID
    entity: str = DEFAULT_ENTITY
    interval: str = DEFAULT_INTERVAL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    def __post_init__(self):
        if not self.url:
            raise ValueError("url is required")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout must be positive")

    @property
    def base_url(self) -> str:
        return self.url.rstrip("/") + "/"

    def with_overrides(self, **overrides) -> ConnectionConfig:
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    @classmethod
    def from_toml(cls, text: str) -> ConnectionConfig:
        """Build a config from TOML text.

        Accepts the bare keys at top level, a `[powerstore]` table, or the
        first `[[inputs.powerstore]]` entry.
        """
        data = tomllib.loads(text)

        section = data
        if "inputs" in data and "powerstore" in data["inputs"]:
            section = data["inputs"]["powerstore"]
            if isinstance(section, list):
                if not section:
                    raise ValueError("[[inputs.powerstore]] is empty")
                section = section[0]
        elif "powerstore" in data:
            section = data["powerstore"]

        insecure = section.get("insecure_skip_verify", False)
        if not isinstance(insecure, bool):
            raise ValueError(
                f"insecure_skip_verify must be true or false, got {insecure!r}"
            )

        return cls(
            url=section.get("url", ""),
            username=section.get("username", ""),
            password=section.get("password", ""),
            tls_ca=section.get("tls_ca"),
            tls_cert=section.get("tls_cert"),
            tls_key=section.get("tls_key"),
            insecure_skip_verify=insecure,
            appliance_id=section.get("appliance_id", DEFAULT_APPLIANCE_ID),
            interval=section.get("interval", DEFAULT_INTERVAL),
            timeout_seconds=float(section.get("timeout", DEFAULT_TIMEOUT_SECONDS)),
        )

    def __repr__(self) -> str:
        return (
            f"ConnectionConfig(url={self.url!r}, username={self.username!r}, "
            f"appliance_id={self.appliance_id!r}, interval={self.interval!r}, "
            f"insecure_skip_verify={self.insecure_skip_verify})"
        )
