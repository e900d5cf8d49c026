"""Client for the upstream social-platform aggregator (Repliz public API).

Two calls are used: listing the user's connected accounts and creating one
scheduled post per account. Requests authenticate with HTTP Basic auth using
the user's own access/secret key pair.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger("videorelay.aggregator")

DEFAULT_BASE_URL = "https://api.repliz.com"


@dataclass(frozen=True)
class AggregatorCredentials:
    access_key: str
    secret_key: str

    def __repr__(self) -> str:
        return "AggregatorCredentials(access_key=***, secret_key=***)"


@dataclass(frozen=True)
class Account:
    id: str
    name: str
    type: str
    username: str = ""
    is_connected: bool = True
    picture: str | None = None

    @classmethod
    def from_api(cls, doc: dict[str, Any]) -> "Account":
        return cls(
            id=doc["_id"],
            name=doc.get("name") or "",
            # Upstream sends explicit nulls for unset fields.
            type=doc.get("type") or "",
            username=doc.get("username") or "",
            is_connected=bool(doc.get("isConnected", False)),
            picture=doc.get("picture"),
        )


class AggregatorError(Exception):
    """Upstream call failed. `unauthorized` distinguishes bad credentials."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def unauthorized(self) -> bool:
        return self.status_code == 401


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.reason_phrase or f"HTTP {response.status_code}"


class AggregatorClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self, credentials: AggregatorCredentials) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            auth=httpx.BasicAuth(credentials.access_key, credentials.secret_key),
            headers={"Content-Type": "application/json"},
            timeout=self._timeout,
            transport=self._transport,
        )

    async def list_accounts(self, credentials: AggregatorCredentials) -> list[Account]:
        """Return the user's connected accounts only."""
        async with self._client(credentials) as client:
            try:
                response = await client.get("/public/account", params={"page": 1, "limit": 100})
            except httpx.HTTPError as e:
                raise AggregatorError(str(e) or type(e).__name__) from e

        logger.debug("GET /public/account -> %d", response.status_code)
        if response.status_code == 401:
            raise AggregatorError(
                "Invalid credentials (401: invalid authorization header)", status_code=401
            )
        if response.status_code == 402:
            raise AggregatorError("Invalid plan (402: invalid plan)", status_code=402)
        if response.is_error:
            raise AggregatorError(
                _error_message(response),
                status_code=response.status_code,
            )

        docs = response.json().get("docs", [])
        return [a for a in (Account.from_api(d) for d in docs) if a.is_connected]

    async def create_schedule(
        self,
        payload: dict[str, Any],
        credentials: AggregatorCredentials,
    ) -> dict[str, Any]:
        async with self._client(credentials) as client:
            try:
                response = await client.post("/public/schedule", json=payload)
            except httpx.HTTPError as e:
                raise AggregatorError(f"Failed to create schedule: {e}") from e

        logger.debug(
            "POST /public/schedule account=%s -> %d", payload.get("accountId"), response.status_code
        )
        if response.status_code == 401:
            raise AggregatorError("Invalid credentials", status_code=401)
        if response.status_code == 402:
            raise AggregatorError("Invalid plan", status_code=402)
        if response.is_error:
            raise AggregatorError(
                f"Failed to create schedule: {_error_message(response)}",
                status_code=response.status_code,
            )
        return response.json()


# Module-level singleton, replaced in tests
_aggregator: AggregatorClient | None = None


def get_aggregator() -> AggregatorClient:
    global _aggregator
    if _aggregator is None:
        from videorelay.config import settings
        _aggregator = AggregatorClient(
            settings.aggregator_base_url, timeout=settings.aggregator_timeout_seconds
        )
    return _aggregator


def set_aggregator(client: AggregatorClient | None) -> None:
    global _aggregator
    _aggregator = client
