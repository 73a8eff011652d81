from __future__ import annotations

import ssl
from dataclasses import dataclass
from typing import Optional

import httpx
from loguru import logger

from .errors import ConstructionError
from .models import U32_MAX

BASE_URL = "https://api.stitchdata.com/v2/import"

DEFAULT_POOL_MAX = 4
DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class Transport:
    """
    Shared, read-only connection state for every request a client makes.

    Holds the bearer header, client id and one pooled ``httpx.AsyncClient``.
    Nothing here changes after construction, so any number of coroutines on
    the same event loop may use it at once. It must not be shared across
    event loops or threads.
    """

    client_id: int
    authorization: str
    base_url: str
    http: httpx.AsyncClient

    @classmethod
    def create(
        cls,
        client_id: int,
        auth_token: str,
        *,
        base_url: str = BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        pool_max: int = DEFAULT_POOL_MAX,
        ca_bundle: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "Transport":
        valid_id = isinstance(client_id, int) and not isinstance(client_id, bool)
        if not valid_id or not (0 <= client_id <= U32_MAX):
            raise ConstructionError(f"client_id must be an unsigned 32-bit int, got {client_id!r}")
        if not auth_token:
            raise ConstructionError("auth_token required")
        if pool_max <= 0:
            raise ConstructionError("pool_max must be > 0")

        try:
            verify = ssl.create_default_context(cafile=ca_bundle)
            http = httpx.AsyncClient(
                verify=verify,
                timeout=timeout,
                limits=httpx.Limits(max_connections=pool_max, max_keepalive_connections=pool_max),
                transport=transport,
            )
        except (OSError, ValueError) as e:
            raise ConstructionError(f"could not set up secure connection: {e}") from e

        logger.debug(f"Stitch transport ready: client_id={client_id} base_url={base_url}")
        return cls(
            client_id=client_id,
            authorization=f"Bearer {auth_token}",
            base_url=base_url.rstrip("/"),
            http=http,
        )

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def get(self, path: str) -> httpx.Response:
        return await self.http.get(self.url(path), headers={"Authorization": self.authorization})

    async def post_json(self, path: str, body: bytes) -> httpx.Response:
        headers = {
            "Authorization": self.authorization,
            "Content-Type": "application/json",
            "Content-Length": str(len(body)),
        }
        return await self.http.post(self.url(path), content=body, headers=headers)

    async def aclose(self) -> None:
        await self.http.aclose()
