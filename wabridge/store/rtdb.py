"""Firebase Realtime Database backend over its REST API."""

from __future__ import annotations

from typing import Any, Callable

import httpx
from loguru import logger

from ..errors import StoreError
from .base import ABORT, SharedStore, TransactionResult, join_path


class RealtimeDatabaseStore(SharedStore):
    """Shared store backed by a Firebase Realtime Database.

    Transactions use the REST API's ETag support: the current value is read
    with ``X-Firebase-ETag``, and the new value is written with ``if-match``.
    A 412 response means another writer got there first; the update function
    is re-run against the value returned with the 412.
    """

    def __init__(
        self,
        url: str,
        auth: str = "",
        timeout: float = 15.0,
        max_transaction_retries: int = 25,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url:
            raise ValueError("Realtime Database URL is required (store.url)")
        self._auth = auth
        self._max_retries = max_transaction_retries
        self._client = httpx.AsyncClient(
            base_url=url.rstrip("/"), timeout=timeout, transport=transport
        )

    async def close(self) -> None:
        await self._client.aclose()

    def _url(self, path: str) -> str:
        return f"/{join_path(path)}.json"

    def _params(self) -> dict[str, str]:
        return {"auth": self._auth} if self._auth else {}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
        allow: tuple[int, ...] = (),
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                self._url(path),
                params=self._params(),
                json=json,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {path} failed: {e}") from e

        if response.status_code in allow:
            return response
        if response.is_error:
            detail = response.text.strip().replace("\n", " ")[:200]
            raise StoreError(
                f"{method} {path} returned {response.status_code}: {detail}",
                status=response.status_code,
            )
        return response

    async def get(self, path: str) -> Any:
        response = await self._request("GET", path)
        return response.json()

    async def set(self, path: str, value: Any) -> None:
        await self._request("PUT", path, json=value)

    async def update(self, path: str, values: dict[str, Any]) -> None:
        await self._request("PATCH", path, json=values)

    async def delete(self, path: str) -> None:
        await self._request("DELETE", path)

    async def push(self, path: str, value: Any) -> str:
        response = await self._request("POST", path, json=value)
        return response.json()["name"]

    async def transaction(
        self, path: str, update: Callable[[Any], Any]
    ) -> TransactionResult:
        response = await self._request(
            "GET", path, headers={"X-Firebase-ETag": "true"}
        )
        etag = response.headers.get("ETag", "")
        current = response.json()

        for attempt in range(self._max_retries):
            new_value = update(current)
            if new_value is ABORT:
                return TransactionResult(committed=False, value=current)

            response = await self._request(
                "PUT",
                path,
                json=new_value,
                headers={"if-match": etag},
                allow=(412,),
            )
            if response.status_code != 412:
                return TransactionResult(committed=True, value=new_value)

            logger.debug(
                f"Transaction on {path} lost a race (attempt {attempt + 1}), retrying"
            )
            etag = response.headers.get("ETag", "")
            current = response.json()

        raise StoreError(
            f"Transaction on {path} did not settle after {self._max_retries} attempts"
        )
