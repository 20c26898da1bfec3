"""Async HTTP client for the PillNow REST store.

Credentials are passed explicitly on every call; the client itself holds no
token.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from config import settings
from logger_config import setup_logger

logger = setup_logger(__name__, 'writer.log')


@dataclass(frozen=True)
class Credentials:
    """Bearer token plus the identity it was issued for."""
    token: str
    user_id: int
    role: int

    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Cache-Control": "no-cache",
        }


class StoreError(Exception):
    """A store request failed.

    ``status_code`` is None for transport failures (timeouts, refused
    connections); ``body`` holds the response text or the error message.
    """

    def __init__(self, status_code: Optional[int], body: str):
        self.status_code = status_code
        self.body = body
        if status_code is None:
            super().__init__(f"Store request failed: {body}")
        else:
            super().__init__(f"HTTP error! status: {status_code} - {body}")


class ScheduleStoreClient:
    """Thin async wrapper over the store's REST endpoints.

    Usage:
        async with ScheduleStoreClient() as store:
            creds = await store.login("elder@example.com", "secret")
            records = await store.list_schedules(creds, user=creds.user_id)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = (base_url or settings.STORE_API_URL).rstrip('/')
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else settings.STORE_TIMEOUT,
            transport=transport,
        )

    async def __aenter__(self) -> "ScheduleStoreClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        credentials: Optional[Credentials] = None,
        **kwargs
    ) -> Any:
        headers = credentials.headers() if credentials else {}
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Timeout on {method} {path}")
            raise StoreError(None, f"timeout on {method} {path}") from e
        except httpx.RequestError as e:
            logger.error(f"Network error on {method} {path}: {str(e)}")
            raise StoreError(None, str(e)) from e

        if response.is_error:
            logger.error(f"{method} {path} failed. Status: {response.status_code}, Response: {response.text}")
            raise StoreError(response.status_code, response.text)

        if not response.content:
            return None
        return response.json()

    # Auth -------------------------------------------------------------------

    async def login(self, email: str, password: str) -> Credentials:
        """Exchange email and password for credentials."""
        data = await self._request("POST", "/auth/login", json={"email": email, "password": password})
        user = data["user"]
        return Credentials(token=data["token"], user_id=int(user["userId"]), role=int(user["role"]))

    async def current_user(self, credentials: Credentials) -> Dict[str, Any]:
        """Validate that the credentials belong to an elder."""
        return await self._request("GET", "/monitor/current-user", credentials)

    # Catalog ----------------------------------------------------------------

    async def list_medications(self, credentials: Credentials) -> List[Dict[str, Any]]:
        return await self._request("GET", "/medications", credentials)

    # Schedules --------------------------------------------------------------

    async def list_schedules(
        self,
        credentials: Credentials,
        user: Optional[int] = None,
        container: Optional[int] = None,
        status: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        params = {k: v for k, v in (("user", user), ("container", container), ("status", status)) if v is not None}
        return await self._request("GET", "/medication_schedules", credentials, params=params)

    async def create_schedule(self, credentials: Credentials, record: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/medication_schedules", credentials, json=record)

    async def update_schedule(
        self,
        credentials: Credentials,
        schedule_id: int,
        record: Dict[str, Any]
    ) -> Dict[str, Any]:
        return await self._request("PUT", f"/medication_schedules/{schedule_id}", credentials, json=record)

    async def delete_schedule(self, credentials: Credentials, schedule_id: int) -> Dict[str, Any]:
        return await self._request("DELETE", f"/medication_schedules/{schedule_id}", credentials)

    async def load_schedule_data(
        self,
        credentials: Credentials,
        elder_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """Fetch the reconciled container view from the server."""
        params = {"elderId": elder_id} if elder_id is not None else {}
        return await self._request("GET", "/monitor/schedule-data", credentials, params=params)
