"""
Simulator API Client
====================

HTTP client for the Train Sim World external interface API.

Endpoints:
    GET    /info                          - API description
    GET    /list[/<path>]                 - Browse nodes
    GET    /get/<path>                    - Read a value
    PATCH  /set/<path>?Value=<v>          - Write a value
    POST   /subscription/<path>?Subscription=<id>
    GET    /subscription?Subscription=<id>
    DELETE /subscription?Subscription=<id>

Every request carries the DTGCommKey header. Responses are JSON objects;
reads return {"Result": "Success", "Values": {...}}.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
import logging

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:31270"

Value = Union[int, float, bool, str]


class SimulatorError(Exception):
    """Request to the simulator failed (transport, timeout or bad payload)."""


class SimulatorHTTPError(SimulatorError):
    """Simulator answered with a non-200 status."""

    def __init__(self, status_code: int, body: Any):
        super().__init__(f"HTTP {status_code}: {body}")
        self.status_code = status_code
        self.body = body


@dataclass
class SimulatorConfig:
    """Connection settings for the simulator API."""
    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    timeout_s: float = 5.0

    # Health check cadence used by SimulatorConnection
    health_check_interval_s: float = 2.0


class SimulatorClient:
    """
    Synchronous client for the simulator API.

    Raises SimulatorError for transport failures and non-200 answers.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: str = "",
        timeout: Union[float, httpx.Timeout] = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self._transport = transport
        self._http = httpx.Client(
            base_url=base_url,
            headers={"DTGCommKey": api_key},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: SimulatorConfig, **kwargs) -> "SimulatorClient":
        return cls(base_url=config.base_url, api_key=config.api_key, timeout=config.timeout_s, **kwargs)

    @property
    def timeout(self) -> httpx.Timeout:
        return self._http.timeout

    def with_fast_timeouts(self) -> "SimulatorClient":
        """
        Copy of this client for liveness probes.

        1s receive timeout and 0.5s pool timeout, no retries, so a hung
        request cannot hold up detection of a recovered simulator.
        """
        return SimulatorClient(
            base_url=self.base_url,
            api_key=self.api_key,
            timeout=httpx.Timeout(1.0, pool=0.5),
            transport=self._transport,
        )

    def close(self):
        self._http.close()

    def info(self) -> Dict[str, Any]:
        return self._request("GET", "/info")

    def list(self, path: Optional[str] = None) -> Dict[str, Any]:
        return self._request("GET", f"/list/{path}" if path else "/list")

    def get(self, path: str) -> Dict[str, Any]:
        return self._request("GET", f"/get/{path}")

    def set(self, path: str, value: Value) -> Dict[str, Any]:
        """Write a value. Booleans are sent as true/false."""
        if isinstance(value, bool):
            value = "true" if value else "false"
        return self._request("PATCH", f"/set/{path}", params={"Value": value})

    def subscribe(self, path: str, subscription_id: int) -> Dict[str, Any]:
        return self._request("POST", f"/subscription/{path}", params={"Subscription": subscription_id})

    def get_subscription(self, subscription_id: int) -> Dict[str, Any]:
        return self._request("GET", "/subscription", params={"Subscription": subscription_id})

    def unsubscribe(self, subscription_id: int) -> Dict[str, Any]:
        return self._request("DELETE", "/subscription", params={"Subscription": subscription_id})

    def get_value(self, path: str) -> Any:
        """Read a path and return its first value."""
        values = self.get(path).get("Values")
        if not isinstance(values, dict) or not values:
            raise SimulatorError(f"No value returned for {path}")
        return next(iter(values.values()))

    def get_int(self, path: str) -> int:
        value = self.get_value(path)
        try:
            return int(float(value)) if isinstance(value, str) else int(value)
        except (TypeError, ValueError) as e:
            raise SimulatorError(f"Invalid integer at {path}: {value!r}") from e

    def get_float(self, path: str) -> float:
        value = self.get_value(path)
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise SimulatorError(f"Invalid float at {path}: {value!r}") from e

    def _request(self, method: str, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = self._http.request(method, url, params=params)
        except httpx.HTTPError as e:
            raise SimulatorError(f"{method} {url} failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = response.text

        if response.status_code != 200:
            raise SimulatorHTTPError(response.status_code, body)
        if not isinstance(body, dict):
            raise SimulatorError(f"{method} {url}: unexpected response body {body!r}")
        return body
