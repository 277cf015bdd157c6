"""Reading store backed by the service's HTTP interface."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from app.schemas import (
    AggregateCreateRequest,
    AggregateCreateResponse,
    AggregatePayload,
    ReadingPayload,
)
from models.records import Aggregate, Reading, WindowKind, ensure_utc
from services.errors import (
    AuthorizationError,
    DuplicateWindowError,
    MalformedResponseError,
    TransientStoreError,
)

_TRANSIENT_STATUSES = {408, 429}


class HttpReadingStore:
    """Talks to ``/sensordata`` and ``/average`` with an optional bearer token."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers: Dict[str, str] = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self._client.headers.update(headers)

    async def __aenter__(self) -> "HttpReadingStore":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def put_reading(self, reading: Reading) -> Reading:
        body = ReadingPayload.from_record(reading).model_dump(mode="json", by_alias=True)
        response = await self._request("POST", "/sensordata", json=body)
        self._expect(response, {200, 201})
        return self._parse(ReadingPayload, self._json(response)).to_record()

    async def query_readings(self, start: datetime, end: datetime) -> list[Reading]:
        params = {
            "start": ensure_utc(start).isoformat(),
            "end": ensure_utc(end).isoformat(),
        }
        response = await self._request("GET", "/sensordata", params=params)
        self._expect(response, {200})
        return [self._parse(ReadingPayload, item).to_record() for item in self._json_list(response)]

    async def latest_reading(self) -> Optional[Reading]:
        response = await self._request("GET", "/sensordata/latest")
        if response.status_code == 404:
            return None
        self._expect(response, {200})
        return self._parse(ReadingPayload, self._json(response)).to_record()

    async def insert_aggregate(self, aggregate: Aggregate) -> Aggregate:
        body = AggregateCreateRequest.from_record(aggregate).model_dump(mode="json", by_alias=True)
        response = await self._request("POST", "/average", json=body)
        if response.status_code == 409:
            envelope = self._parse(AggregateCreateResponse, self._json(response))
            raise DuplicateWindowError(envelope.data.to_record())
        self._expect(response, {200, 201})
        envelope = self._parse(AggregateCreateResponse, self._json(response))
        if not envelope.success:
            raise DuplicateWindowError(envelope.data.to_record())
        return envelope.data.to_record()

    async def list_aggregates(
        self, kind: WindowKind, limit: Optional[int] = None
    ) -> list[Aggregate]:
        params: Dict[str, Any] = {"type": kind.value}
        if limit is not None:
            params["limit"] = limit
        response = await self._request("GET", "/average", params=params)
        self._expect(response, {200})
        return [self._parse(AggregatePayload, item).to_record() for item in self._json_list(response)]

    async def latest_aggregate(self, kind: WindowKind) -> Optional[Aggregate]:
        items = await self.list_aggregates(kind, limit=1)
        return items[-1] if items else None

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientStoreError(f"{method} {path} timed out.") from exc
        except httpx.TransportError as exc:
            raise TransientStoreError(f"{method} {path} failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthorizationError(f"{method} {path} was not authorized ({response.status_code}).")
        if response.status_code >= 500 or response.status_code in _TRANSIENT_STATUSES:
            raise TransientStoreError(
                f"{method} {path} returned {response.status_code}.",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _expect(response: httpx.Response, statuses: set[int]) -> None:
        if response.status_code not in statuses:
            raise MalformedResponseError(
                f"Unexpected status {response.status_code} from {response.request.url.path}."
            )

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError("Response body is not valid JSON.") from exc

    def _json_list(self, response: httpx.Response) -> list[Any]:
        payload = self._json(response)
        if not isinstance(payload, list):
            raise MalformedResponseError("Expected a JSON array.")
        return payload

    @staticmethod
    def _parse(model: Any, payload: Any) -> Any:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponseError(f"Unexpected payload shape: {exc.error_count()} error(s).") from exc
