"""
Minimal PowerStore REST API client on top of httpx.

Only the three calls the collector needs: open a login session, read
appliance capacity, and run a metrics/generate query. Every transport
or HTTP failure is turned into a pstore error so callers never see raw
httpx exceptions.
"""

from __future__ import annotations

import logging
import ssl
from typing import Any, Optional, Sequence, Union

import httpx

from pstore.config import ConnectionConfig
from pstore.errors import ApplianceConnectionError, DecodeError, QueryError

log = logging.getLogger(__name__)

TOKEN_HEADER = "DELL-EMC-TOKEN"


def build_verify(config: ConnectionConfig) -> Union[ssl.SSLContext, bool]:
    """Turn the TLS options into something httpx accepts for `verify`."""
    if config.insecure_skip_verify:
        log.warning("TLS certificate verification disabled for %s", config.url)
        return False

    ctx = ssl.create_default_context(cafile=config.tls_ca)
    if config.tls_cert:
        ctx.load_cert_chain(certfile=config.tls_cert, keyfile=config.tls_key)
    return ctx


class PowerStoreClient:

    def __init__(
        self,
        config: ConnectionConfig,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._config = config
        self._token: Optional[str] = None

        try:
            verify = build_verify(config)
        except (OSError, ssl.SSLError) as exc:
            raise ApplianceConnectionError(f"bad TLS settings: {exc}") from exc

        self._client = httpx.Client(
            base_url=config.base_url,
            auth=httpx.BasicAuth(config.username, config.password),
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            timeout=config.timeout_seconds,
            verify=verify,
            transport=transport,
        )

    @property
    def authenticated(self) -> bool:
        return self._token is not None

    def login(self):
        """Open a login session and keep the CSRF token for later calls.

        The session cookie is held by the underlying httpx client.
        """
        try:
            response = self._client.get("login_session")
        except httpx.HTTPError as exc:
            raise ApplianceConnectionError(
                f"cannot reach {self._config.url}: {exc}"
            ) from exc
        except RuntimeError as exc:
            if not self._client.is_closed:
                raise
            raise ApplianceConnectionError("client closed before login") from exc

        if response.status_code in (401, 403):
            raise ApplianceConnectionError(
                f"login rejected for user {self._config.username!r} "
                f"(HTTP {response.status_code})"
            )
        if response.is_error:
            raise ApplianceConnectionError(
                f"login failed with HTTP {response.status_code}"
            )

        self._token = response.headers.get(TOKEN_HEADER)
        if self._token:
            self._client.headers[TOKEN_HEADER] = self._token
        else:
            # Older firmware answers login_session without a token; basic
            # auth on every request still works there.
            log.debug("No %s header in login response", TOKEN_HEADER)
            self._token = ""

    def query(
        self,
        method: str,
        endpoint: str,
        action: Optional[str] = None,
        select: Sequence[str] = (),
        body: Optional[dict] = None,
    ) -> Any:
        """Issue one API request and return the decoded JSON body."""
        path = endpoint if not action else f"{endpoint}/{action}"
        params = {"select": ",".join(select)} if select else None

        try:
            response = self._client.request(method, path, params=params, json=body)
        except httpx.TimeoutException as exc:
            raise QueryError(
                f"{method} {path} timed out after {self._config.timeout_seconds}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise QueryError(f"{method} {path} failed: {exc}") from exc
        except RuntimeError as exc:
            # httpx refuses to send on a client that stop() already closed
            if not self._client.is_closed:
                raise
            raise QueryError(f"{method} {path} failed: client closed") from exc

        if response.is_error:
            raise QueryError(
                f"{method} {path} returned HTTP {response.status_code}: "
                f"{_error_message(response)}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise DecodeError(f"{method} {path} returned invalid JSON: {exc}") from exc

    def get_capacity(self) -> int:
        """Free physical space (bytes) on the first appliance in the cluster."""
        appliances = self.query(
            "GET", "appliance", select=("id", "physical_total", "physical_used")
        )
        if not isinstance(appliances, list):
            raise DecodeError("appliance query did not return a JSON array")
        if not appliances:
            raise QueryError("appliance query returned no appliances")

        first = appliances[0]
        if not isinstance(first, dict):
            raise DecodeError("appliance entry is not a JSON object")
        try:
            return int(first.get("physical_total") or 0) - int(first.get("physical_used") or 0)
        except (TypeError, ValueError) as exc:
            raise DecodeError(f"bad capacity values in appliance entry: {exc}") from exc

    def generate_metrics(
        self,
        entity: str,
        entity_id: str,
        interval: str,
        select: Sequence[str] = (),
    ) -> Any:
        return self.query(
            "POST",
            "metrics",
            action="generate",
            select=select,
            body={"entity": entity, "entity_id": entity_id, "interval": interval},
        )

    def close(self):
        self._client.close()


def _error_message(response: httpx.Response) -> str:
    # PowerStore error bodies look like {"messages": [{"message_l10n": "..."}]}
    try:
        payload = response.json()
        return payload["messages"][0]["message_l10n"]
    except (ValueError, KeyError, IndexError, TypeError):
        return response.text[:200]
