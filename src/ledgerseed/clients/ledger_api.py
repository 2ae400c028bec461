"""Client for the ledger platform's onboarding and transaction services.

The onboarding service creates organizations, ledgers, assets, portfolios,
segments and accounts; the transaction service records transactions. HTTP
failures are mapped onto the ledgerseed error taxonomy so the retry policy
and circuit breakers can tell transient failures from request defects.
"""

import hashlib
import json
from typing import Any, Protocol

import httpx
import structlog

from ledgerseed.config import GeneratorOptions
from ledgerseed.models.base import generate_ulid
from ledgerseed.models.entities import EntityKind, EntityRef
from ledgerseed.utils.exceptions import (
    ClientApiError,
    ConflictError,
    TransientApiError,
    is_conflict_message,
)

logger = structlog.get_logger()

TRANSIENT_STATUS_CODES = frozenset({408, 429})

# Payload field that identifies an existing entity when creation conflicts
NATURAL_KEYS: dict[EntityKind, str | None] = {
    EntityKind.ORGANIZATION: "legalDocument",
    EntityKind.LEDGER: "name",
    EntityKind.ASSET: "code",
    EntityKind.PORTFOLIO: "name",
    EntityKind.SEGMENT: "name",
    EntityKind.ACCOUNT: "alias",
    EntityKind.TRANSACTION: None,
}

LOOKUP_PAGE_SIZE = 100


class LedgerApiClient(Protocol):
    """Remote API used by the entity generator."""

    async def create_entity(
        self,
        kind: EntityKind,
        payload: dict[str, Any],
        *,
        organization_id: str | None = None,
        ledger_id: str | None = None,
    ) -> EntityRef:
        ...

    async def find_entity(
        self,
        kind: EntityKind,
        payload: dict[str, Any],
        *,
        organization_id: str | None = None,
        ledger_id: str | None = None,
    ) -> EntityRef | None:
        ...


def entity_path(kind: EntityKind, organization_id: str | None, ledger_id: str | None) -> str:
    """Collection path for an entity kind.

    Raises:
        ValueError: If a required parent ID is missing.
    """
    if kind == EntityKind.ORGANIZATION:
        return "/v1/organizations"
    if not organization_id:
        raise ValueError(f"{kind.value} requires organization_id")
    if kind == EntityKind.LEDGER:
        return f"/v1/organizations/{organization_id}/ledgers"
    if not ledger_id:
        raise ValueError(f"{kind.value} requires ledger_id")
    base = f"/v1/organizations/{organization_id}/ledgers/{ledger_id}"
    if kind == EntityKind.TRANSACTION:
        return f"{base}/transactions/json"
    return f"{base}/{kind.plural}"


def idempotency_key(payload: dict[str, Any]) -> str:
    """Stable key for a payload, so a retried transaction is not booked twice."""
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode()).hexdigest()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("title") or body)
    return str(body)


def raise_for_status(response: httpx.Response, kind: EntityKind) -> None:
    """Map a failed response onto the error taxonomy.

    Raises:
        ConflictError: 409, or any 4xx saying the entity already exists.
        TransientApiError: 408, 429 and 5xx.
        ClientApiError: Any other 4xx.
    """
    if response.is_success:
        return

    status = response.status_code
    message = _error_message(response)
    details = {"kind": kind.value, "url": str(response.request.url), "status_code": status}

    if status == 409:
        raise ConflictError(message, status, details)
    if status in TRANSIENT_STATUS_CODES or status >= 500:
        raise TransientApiError(f"{kind.value} request failed with {status}: {message}", status, details)
    if 400 <= status < 500:
        if is_conflict_message(message):
            raise ConflictError(message, status, details)
        raise ClientApiError(f"{kind.value} request rejected with {status}: {message}", status, details)
    raise TransientApiError(f"Unexpected status {status}: {message}", status, details)


class HttpLedgerClient:
    """httpx-based ``LedgerApiClient``.

    Example:
        async with HttpLedgerClient.from_options(options) as client:
            ref = await client.create_entity(EntityKind.ORGANIZATION, payload)
    """

    def __init__(
        self,
        onboarding_url: str,
        transaction_url: str,
        timeout: float = 30.0,
        auth_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"

        self._onboarding = httpx.AsyncClient(
            base_url=onboarding_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self._transactions = httpx.AsyncClient(
            base_url=transaction_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self.logger = logger.bind(service="ledger_api")

    @classmethod
    def from_options(
        cls,
        options: GeneratorOptions,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "HttpLedgerClient":
        return cls(
            onboarding_url=options.onboarding_url,
            transaction_url=options.transaction_url,
            timeout=options.request_timeout,
            auth_token=options.auth_token,
            transport=transport,
        )

    async def __aenter__(self) -> "HttpLedgerClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._onboarding.aclose()
        await self._transactions.aclose()

    def _client_for(self, kind: EntityKind) -> httpx.AsyncClient:
        return self._transactions if kind == EntityKind.TRANSACTION else self._onboarding

    async def _send(
        self,
        kind: EntityKind,
        method: str,
        path: str,
        *,
        payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        request_id = generate_ulid()
        try:
            response = await self._client_for(kind).request(
                method,
                path,
                json=payload,
                params=params,
                headers={"X-Request-Id": request_id, **(headers or {})},
            )
        except httpx.TimeoutException as e:
            raise TransientApiError(
                f"{kind.value} request timed out",
                details={"path": path, "request_id": request_id},
            ) from e
        except httpx.TransportError as e:
            raise TransientApiError(
                f"{kind.value} request failed: {e}",
                details={"path": path, "request_id": request_id},
            ) from e

        self.logger.debug(
            "API response",
            method=method,
            path=path,
            status_code=response.status_code,
            request_id=request_id,
        )
        raise_for_status(response, kind)

        try:
            return response.json()
        except ValueError as e:
            raise TransientApiError(
                f"{kind.value} response is not JSON",
                response.status_code,
                {"path": path, "request_id": request_id},
            ) from e

    def _to_ref(
        self,
        kind: EntityKind,
        body: Any,
        payload: dict[str, Any],
        organization_id: str | None,
        ledger_id: str | None,
    ) -> EntityRef:
        if not isinstance(body, dict) or not body.get("id"):
            raise TransientApiError(f"{kind.value} response has no id", details={"body": str(body)[:200]})

        attributes: dict[str, Any] = {}
        for key in ("name", "code", "alias", "assetCode", "legalDocument"):
            value = body.get(key, payload.get(key))
            if value is not None:
                attributes[key] = value

        return EntityRef(
            id=str(body["id"]),
            kind=kind,
            organization_id=organization_id if kind != EntityKind.ORGANIZATION else None,
            ledger_id=ledger_id if kind not in (EntityKind.ORGANIZATION, EntityKind.LEDGER) else None,
            attributes=attributes,
        )

    async def create_entity(
        self,
        kind: EntityKind,
        payload: dict[str, Any],
        *,
        organization_id: str | None = None,
        ledger_id: str | None = None,
    ) -> EntityRef:
        """Create an entity.

        Args:
            kind: Entity kind.
            payload: Request body.
            organization_id: Owning organization (all kinds but organizations).
            ledger_id: Owning ledger (kinds below ledger).

        Returns:
            Reference to the created entity.

        Raises:
            ConflictError: The entity already exists.
            ClientApiError: The request was rejected.
            TransientApiError: Timeout, throttling, 5xx or network failure.
        """
        path = entity_path(kind, organization_id, ledger_id)
        headers = None
        if kind == EntityKind.TRANSACTION:
            headers = {"Idempotency-Key": idempotency_key(payload)}

        body = await self._send(kind, "POST", path, payload=payload, headers=headers)
        return self._to_ref(kind, body, payload, organization_id, ledger_id)

    async def find_entity(
        self,
        kind: EntityKind,
        payload: dict[str, Any],
        *,
        organization_id: str | None = None,
        ledger_id: str | None = None,
    ) -> EntityRef | None:
        """Look up an existing entity by the natural key of ``payload``.

        Returns:
            The matching entity, or None if the kind has no natural key or
            nothing matches.
        """
        key = NATURAL_KEYS[kind]
        if key is None or payload.get(key) is None:
            return None

        path = entity_path(kind, organization_id, ledger_id)
        body = await self._send(kind, "GET", path, params={"limit": LOOKUP_PAGE_SIZE})
        items = body.get("items", []) if isinstance(body, dict) else body

        for item in items or []:
            if isinstance(item, dict) and item.get(key) == payload[key]:
                return self._to_ref(kind, item, payload, organization_id, ledger_id)
        return None
