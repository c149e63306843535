"""
Client for the paid challenge solving service (2Captcha-compatible API).

Two calls make up the protocol:

    POST {base_url}/createTask     {clientKey, task}    -> {errorId, taskId}
    POST {base_url}/getTaskResult  {clientKey, taskId}  -> {errorId, status, solution}

A non-zero errorId is always an error. Tasks are solved through the same
proxy the browser uses whenever one is active, so the token is issued for
the IP address that will redeem it.
"""

from dataclasses import dataclass
from typing import Any, cast

import httpx

from src.crawler.proxy_pool import ProxyEndpoint
from src.utils.logging import get_logger
from src.utils.secure_logging import mask_secret, sanitize_payload

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.2captcha.com"


class SolvingServiceError(Exception):
    """Raised for transport failures and protocol errors from the service."""

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.error_code = error_code


@dataclass(frozen=True)
class SolveTask:
    """A task submitted to the service.

    Attributes:
        task_id: Identifier returned by createTask.
        proxy_binding: Proxy the task is solved through (None when proxyless).
    """

    task_id: str
    proxy_binding: ProxyEndpoint | None = None


@dataclass(frozen=True)
class TaskResult:
    """One getTaskResult poll.

    Attributes:
        ready: True once the service finished the task.
        token: Solution token when ready.
    """

    ready: bool
    token: str | None = None


def build_task(site_key: str, page_url: str, proxy: ProxyEndpoint | None = None) -> dict[str, Any]:
    """Build the createTask ``task`` object.

    Args:
        site_key: reCAPTCHA sitekey.
        page_url: URL of the page showing the challenge.
        proxy: Active proxy, if any.

    Returns:
        Task payload.
    """
    if proxy is None:
        return {
            "type": "RecaptchaV2TaskProxyless",
            "websiteURL": page_url,
            "websiteKey": site_key,
        }

    task: dict[str, Any] = {
        "type": "RecaptchaV2Task",
        "websiteURL": page_url,
        "websiteKey": site_key,
        "proxyType": "socks5" if proxy.scheme == "socks5" else "http",
        "proxyAddress": proxy.host,
        "proxyPort": proxy.port,
    }
    if proxy.has_credentials:
        task["proxyLogin"] = proxy.username
        task["proxyPassword"] = proxy.password
    return task


class TwoCaptchaClient:
    """Async client for the solving service."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
    ):
        """Initialize client.

        Args:
            api_key: Account key (clientKey).
            base_url: Service base URL.
            timeout: HTTP timeout in seconds.
        """
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session: httpx.AsyncClient | None = None

    def __repr__(self) -> str:
        return f"TwoCaptchaClient(base_url={self.base_url!r}, api_key={mask_secret(self._api_key)!r})"

    async def _get_session(self) -> httpx.AsyncClient:
        """Get HTTP session (lazy initialization)."""
        if self._session is None:
            self._session = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._session

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        session = await self._get_session()
        try:
            response = await session.post(f"{self.base_url}/{endpoint}", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise SolvingServiceError(f"{endpoint} request failed: {e}") from e
        except ValueError as e:
            raise SolvingServiceError(f"{endpoint} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise SolvingServiceError(f"{endpoint} returned unexpected payload")

        error_id = data.get("errorId", 0)
        if error_id:
            code = data.get("errorCode")
            logger.warning(
                "Solving service error",
                endpoint=endpoint,
                error_id=error_id,
                error_code=code,
                response=sanitize_payload(data),
            )
            raise SolvingServiceError(
                data.get("errorDescription") or f"{endpoint} failed with errorId={error_id}",
                error_code=code,
            )
        return cast(dict[str, Any], data)

    async def create_task(
        self,
        site_key: str,
        page_url: str,
        proxy: ProxyEndpoint | None = None,
    ) -> SolveTask:
        """Submit a challenge.

        Raises:
            SolvingServiceError: On transport errors, errorId != 0 or a missing taskId.
        """
        task = build_task(site_key, page_url, proxy)
        data = await self._post("createTask", {"clientKey": self._api_key, "task": task})

        task_id = data.get("taskId")
        if task_id is None:
            raise SolvingServiceError("createTask response has no taskId")

        logger.info(
            "Challenge submitted to solving service",
            task_id=task_id,
            task_type=task["type"],
            proxy=proxy.masked if proxy else None,
        )
        return SolveTask(task_id=str(task_id), proxy_binding=proxy)

    async def get_task_result(self, task: SolveTask) -> TaskResult:
        """Poll a task once.

        Raises:
            SolvingServiceError: On transport errors, errorId != 0, or a
                ready response without a token.
        """
        data = await self._post(
            "getTaskResult",
            {"clientKey": self._api_key, "taskId": _task_id_value(task.task_id)},
        )

        if data.get("status") != "ready":
            return TaskResult(ready=False)

        solution = data.get("solution") or {}
        token = solution.get("gRecaptchaResponse") or solution.get("token")
        if not token:
            raise SolvingServiceError("Task ready but solution has no token")
        return TaskResult(ready=True, token=token)

    async def close(self) -> None:
        """Close the session."""
        if self._session:
            await self._session.aclose()
            self._session = None
            logger.debug("Solving service client closed")


def _task_id_value(task_id: str) -> int | str:
    """The service issues numeric task ids and expects them back as numbers."""
    return int(task_id) if task_id.isdigit() else task_id
