"""Async client for an Azure-Resource-Manager-style REST control plane."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from cloud_provisioner.clients.base import (
    Canceled,
    Failed,
    OperationHandle,
    OperationStatus,
    ResourceAddress,
    Running,
    Succeeded,
    SubmitResult,
    SyncResult,
)
from cloud_provisioner.config.models import Action, ClientConfig
from cloud_provisioner.errors import (
    RemoteRejected,
    ResourceNotFound,
    TransportError,
)
from cloud_provisioner.resources.ids import resource_id

logger = structlog.get_logger()

_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
_RUNNING_STATES = frozenset(
    {"inprogress", "running", "accepted", "creating", "updating", "deleting"}
)


def _retry_after(resp: httpx.Response) -> float | None:
    """Seconds from a numeric Retry-After header; HTTP dates are ignored."""
    value = resp.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _json_or_none(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return None


class ArmClient:
    """Thin async wrapper around an ARM-compatible management API.

    Create-or-update is a ``PUT`` on the resource ID, delete a ``DELETE``,
    read a ``GET``. ``201``/``202`` answers carrying ``Azure-AsyncOperation``
    or ``Location`` become :class:`OperationHandle` objects.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or ClientConfig()
        if not self._config.subscription_id:
            msg = "ArmClient requires a subscription_id (set AZURE_SUBSCRIPTION_ID)"
            raise ValueError(msg)
        self._subscription_id = self._config.subscription_id
        headers: dict[str, str] = {}
        if self._config.access_token is not None:
            headers["Authorization"] = (
                f"Bearer {self._config.access_token.get_secret_value()}"
            )
        self._client = http_client or httpx.AsyncClient(
            base_url=self._config.endpoint,
            timeout=self._config.timeout_seconds,
            headers=headers,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ArmClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def resource_id(self, address: ResourceAddress) -> str:
        return resource_id(self._subscription_id, address)

    # -- Transport -------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        api_version: str | None = None,
        json: Any | None = None,
    ) -> httpx.Response:
        params = {"api-version": api_version} if api_version else None
        try:
            resp = await self._client.request(method, url, params=params, json=json)
        except httpx.TransportError as exc:
            msg = f"{method} {url} failed: {exc}"
            raise TransportError(msg) from exc
        self._raise_for_status(resp)
        return resp

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return

        code: str | None = None
        message = resp.text[:200] if resp.text else f"HTTP {resp.status_code}"
        body = _json_or_none(resp)
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            code = body["error"].get("code")
            message = body["error"].get("message", message)

        if resp.status_code == 404:
            raise ResourceNotFound(message, code=code)
        if resp.status_code in _RETRYABLE_STATUS_CODES:
            raise TransportError(
                f"{resp.request.method} {resp.request.url} returned "
                f"{resp.status_code}: {message}",
                status_code=resp.status_code,
                retry_after=_retry_after(resp),
            )
        raise RemoteRejected(resp.status_code, message, code=code)

    # -- Contract --------------------------------------------------------------

    async def submit(
        self,
        action: Action,
        address: ResourceAddress,
        payload: dict[str, Any] | None = None,
        *,
        api_version: str | None = None,
    ) -> SubmitResult:
        version = api_version or self._config.default_api_version
        url = self.resource_id(address)

        if action == Action.READ:
            return SyncResult(await self.fetch(address, api_version=version))

        if action == Action.CREATE_OR_UPDATE:
            resp = await self._request(
                "PUT", url, api_version=version, json=payload or {}
            )
        else:
            resp = await self._request("DELETE", url, api_version=version)

        if resp.status_code in (201, 202):
            locator = resp.headers.get("azure-asyncoperation") or resp.headers.get(
                "location"
            )
            if locator:
                logger.info(
                    "arm.operation_accepted",
                    action=str(action),
                    resource_id=url,
                    status_code=resp.status_code,
                )
                return OperationHandle(
                    locator=locator,
                    retry_after=_retry_after(resp),
                    address=(
                        ResourceAddress(address.kind, address.name, resource_id=url)
                        if action == Action.CREATE_OR_UPDATE
                        else None
                    ),
                    api_version=version,
                )

        logger.info(
            "arm.request_completed",
            action=str(action),
            resource_id=url,
            status_code=resp.status_code,
        )
        body = _json_or_none(resp)
        return SyncResult(body if isinstance(body, dict) else None)

    async def query_status(self, handle: OperationHandle) -> OperationStatus:
        resp = await self._request("GET", handle.locator)
        hint = _retry_after(resp)

        if resp.status_code == 202:
            return Running(retry_after=hint)
        if resp.status_code == 204:
            return Succeeded(None)

        body = _json_or_none(resp)
        if not isinstance(body, dict):
            return Succeeded(None)

        status = body.get("status")
        if not isinstance(status, str):
            # Location-style polling: the final body is the resource itself.
            return Succeeded(body)

        state = status.lower()
        if state in _RUNNING_STATES:
            return Running(retry_after=hint)
        if state == "succeeded":
            return Succeeded(None)
        if state == "failed":
            error = body.get("error")
            return Failed(error if isinstance(error, dict) else {"message": str(error)})
        if state in ("canceled", "cancelled"):
            return Canceled(detail=status)
        msg = f"Unknown operation status '{status}' from {handle.locator}"
        raise RemoteRejected(resp.status_code, msg, code="UnknownStatus")

    async def fetch(
        self, address: ResourceAddress, *, api_version: str | None = None
    ) -> dict[str, Any]:
        version = api_version or self._config.default_api_version
        resp = await self._request("GET", self.resource_id(address), api_version=version)
        body = _json_or_none(resp)
        return body if isinstance(body, dict) else {}
