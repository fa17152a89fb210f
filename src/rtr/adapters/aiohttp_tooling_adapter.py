# rtr/adapters/aiohttp_tooling_adapter.py
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from rtr.core.exceptions import PlatformRequestError
from rtr.core.interfaces.connection import ToolingConnectionPort
from rtr.core.models.platform_error import PlatformErrorResponse
from rtr.core.settings import logger

TokenProvider = Callable[[], Awaitable[str]]


class AioHttpToolingConnection(ToolingConnectionPort):
    """Tooling API connection over aiohttp.

    Use as an async context manager; the session lives for the duration of
    the `async with` block. HTTP and network failures surface as
    PlatformRequestError, status 504 for timeouts and 502 for connection
    errors.
    """

    def __init__(
        self,
        instance_url: str,
        api_version: str,
        access_token: Optional[str] = None,
        token_provider: Optional[TokenProvider] = None,
        username: Optional[str] = None,
        org_id: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self._instance_url = instance_url.rstrip("/")
        self._api_version = api_version
        self._access_token = access_token
        self._token_provider = token_provider
        self._username = username
        self._org_id = org_id
        self._session: Optional[aiohttp.ClientSession] = None
        self._default_client_timeout = aiohttp.ClientTimeout(total=timeout, sock_connect=5.0)

    async def __aenter__(self):
        """Async context manager entry"""
        self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()
        return False

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    @property
    def instance_url(self) -> str:
        return self._instance_url

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    @property
    def username(self) -> Optional[str]:
        return self._username

    @property
    def org_id(self) -> Optional[str]:
        return self._org_id

    @property
    def tooling_url(self) -> str:
        return f"{self._instance_url}/services/data/v{self._api_version}/tooling"

    async def refresh_auth(self) -> None:
        # A static token cannot be refreshed; it is used as long as the platform accepts it
        if self._token_provider is None:
            return
        self._access_token = await self._token_provider()
        logger.debug("[tooling:auth] access token refreshed")

    async def query(self, soql: str) -> Dict[str, Any]:
        return await self._send("GET", f"{self.tooling_url}/query", params={"q": soql})

    async def query_more(self, next_records_url: str) -> Dict[str, Any]:
        # nextRecordsUrl is relative to the instance, e.g. /services/data/v58.0/tooling/query/01g...-2000
        return await self._send("GET", f"{self._instance_url}{next_records_url}")

    async def update(self, sobject_type: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        for record in records:
            record_id = record.get("Id")
            fields = {key: value for key, value in record.items() if key != "Id"}
            try:
                await self._send(
                    "PATCH", f"{self.tooling_url}/sobjects/{sobject_type}/{record_id}", json=fields
                )
                results.append({"id": record_id, "success": True, "errors": []})
            except PlatformRequestError as exc:
                results.append({"id": record_id, "success": False, "errors": [exc.response.detail]})
        return results

    async def create(self, sobject_type: str, record: Dict[str, Any]) -> Dict[str, Any]:
        return await self._send("POST", f"{self.tooling_url}/sobjects/{sobject_type}", json=record)

    async def request(self, method: str, path: str, body: Any = None) -> Any:
        return await self._send(method, f"{self.tooling_url}/{path.lstrip('/')}", json=body)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    async def _send(self, method: str, url: str, **kwargs) -> Any:
        """Issue a request and return the decoded body.

        Translates HTTP/network errors into PlatformRequestError.
        """
        if self._session is None:
            raise RuntimeError("Tooling connection not initialized. Use 'async with' context manager.")

        try:
            async with self._session.request(
                method,
                url,
                headers=self._headers(),
                timeout=self._default_client_timeout,
                **kwargs,
            ) as response:
                if response.status == 204:
                    return None
                try:
                    body = await response.json()
                except (aiohttp.ContentTypeError, ValueError):
                    body = await response.text()

                if response.status >= 400:
                    raise PlatformRequestError(self._error_response(response.status, body).with_url(url))
                return body

        except PlatformRequestError as platform_error:
            logger.warning(
                "Platform rejected request. Method: %s, URL: %s, Status: %s, Detail: %s",
                method,
                url,
                platform_error.response.status,
                platform_error.response.detail,
            )
            raise

        except asyncio.TimeoutError:
            logger.error("Timeout when requesting platform. Method: %s, URL: %s", method, url)
            raise PlatformRequestError(
                PlatformErrorResponse(
                    title="Upstream Timeout",
                    status=504,
                    detail="The request to the platform timed out.",
                    url=url,
                )
            )

        except aiohttp.ClientError as client_error:
            logger.error(
                "Connection error when requesting platform. Method: %s, URL: %s, Error: %s",
                method,
                url,
                str(client_error),
            )
            raise PlatformRequestError(
                PlatformErrorResponse(
                    title="Upstream Connection Error",
                    status=502,
                    detail="There was a connection error with the platform.",
                    url=url,
                )
            )

    @staticmethod
    def _error_response(status: int, body: Any) -> PlatformErrorResponse:
        """Platform errors arrive as a list of {"message", "errorCode"} objects."""
        error_code = None
        detail = f"The platform returned an HTTP error: {status}"
        if isinstance(body, list) and body and isinstance(body[0], dict):
            error_code = body[0].get("errorCode")
            detail = body[0].get("message") or detail
        elif isinstance(body, dict):
            error_code = body.get("errorCode") or body.get("error")
            detail = body.get("message") or body.get("error_description") or detail
        elif isinstance(body, str) and body:
            detail = body[:500]

        title = "Authentication Failed" if status == 401 else "Upstream HTTP Error"
        return PlatformErrorResponse(title=title, status=status, detail=detail, error_code=error_code)
