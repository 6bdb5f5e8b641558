"""HTTP client for the remote task-processing functions."""

from __future__ import annotations

import logging
from typing import Any, Iterable

import httpx

logger = logging.getLogger(__name__)

TOKEN_HEADER = "x-github-token"
PROCESS_TASK = "process-task"
CREATE_AGENT_JOB = "bedrock-agent"
RUN_AGENT_JOB = "process-task-bedrock"

DEFAULT_TIMEOUT_SECONDS = 60.0


class RemoteInvocationError(RuntimeError):
    """Raised when a remote function call fails or returns a non-2xx status."""

    def __init__(self, name: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.name = name
        self.status_code = status_code


def credential_headers(token: str | None) -> dict[str, str]:
    return {TOKEN_HEADER: token} if token else {}


class FunctionsClient:
    """POST JSON bodies to ``{base_url}/functions/v1/{name}``."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
            headers["apikey"] = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
        )

    async def invoke(
        self,
        name: str,
        body: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.post(f"/functions/v1/{name}", json=body, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("Remote function timed out", extra={"function": name})
            raise RemoteInvocationError(name, f"{name} timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("Remote function unreachable", extra={"function": name, "error": str(exc)})
            raise RemoteInvocationError(name, str(exc) or f"{name} failed") from exc

        payload = self._decode(response)
        if not response.is_success:
            message = payload.get("error") or payload.get("message") or f"HTTP {response.status_code}"
            logger.warning(
                "Remote function rejected the call",
                extra={"function": name, "status_code": response.status_code},
            )
            raise RemoteInvocationError(name, str(message), status_code=response.status_code)
        return payload

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            return {"message": response.text}
        return data if isinstance(data, dict) else {"data": data}

    async def aclose(self) -> None:
        await self._client.aclose()


class DisabledFunctionsClient(FunctionsClient):
    """Stand-in used when no functions URL is configured; every call fails."""

    def __init__(self) -> None:  # type: ignore[override]
        pass

    async def invoke(  # type: ignore[override]
        self,
        name: str,
        body: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        raise RemoteInvocationError(name, "Remote functions are not configured")

    async def aclose(self) -> None:  # type: ignore[override]
        return None


class FakeFunctionsClient(FunctionsClient):
    """Test double that records invocations and replays queued responses."""

    def __init__(self, responses: Iterable[dict[str, Any] | Exception] | None = None) -> None:  # type: ignore[override]
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, dict[str, Any], dict[str, str]]] = []
        self.handlers: dict[str, Any] = {}

    async def invoke(  # type: ignore[override]
        self,
        name: str,
        body: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        self._invocations.append((name, dict(body), dict(headers or {})))
        handler = self.handlers.get(name)
        if handler is not None:
            response = handler(body)
        elif self._responses:
            response = self._responses.pop(0)
        else:
            response = {}
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def invocations(self) -> list[tuple[str, dict[str, Any], dict[str, str]]]:
        return self._invocations

    async def aclose(self) -> None:  # type: ignore[override]
        return None


__all__ = [
    "CREATE_AGENT_JOB",
    "DisabledFunctionsClient",
    "FakeFunctionsClient",
    "FunctionsClient",
    "PROCESS_TASK",
    "RUN_AGENT_JOB",
    "RemoteInvocationError",
    "TOKEN_HEADER",
    "credential_headers",
]
