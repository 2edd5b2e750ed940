"""Remote store backed by the Firebase Realtime Database REST API."""

import aiohttp
import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional

from .remote_store import RemoteStore, RemoteStoreError, join_path


logger = logging.getLogger(__name__)


class FirebaseRestStore(RemoteStore):
    """
    Path-addressed store using the Realtime Database REST endpoints.

    Reads map to GET, ``set`` to PUT and ``update`` to PATCH on
    ``{database_url}/{path}.json``. Subscriptions poll the path and invoke the
    callback whenever the returned value differs from the previous one.
    """

    def __init__(self, database_url: str, auth_token: Optional[str] = None,
                 timeout_seconds: float = 10, poll_interval_seconds: float = 5):
        """
        Initialize Firebase REST store.

        Args:
            database_url: Base URL of the database (e.g. https://x.firebaseio.com)
            auth_token: Optional database secret or ID token sent as ``auth``
            timeout_seconds: Total timeout for each HTTP request
            poll_interval_seconds: Interval between subscription polls
        """
        if not database_url:
            raise RemoteStoreError("database_url is required for the Firebase store")

        self.database_url = database_url.rstrip('/')
        self.auth_token = auth_token
        self.timeout_seconds = timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._poll_tasks: Dict[int, asyncio.Task] = {}
        self._next_poll_id = 0

    def _url(self, path: str) -> str:
        path = join_path(path)
        if not path:
            return f"{self.database_url}/.json"
        return f"{self.database_url}/{path}.json"

    def _params(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        params = dict(extra or {})
        if self.auth_token:
            params['auth'] = self.auth_token
        return params

    async def _request(self, method: str, path: str, payload: Any = None,
                       params: Optional[Dict[str, str]] = None) -> Any:
        url = self._url(path)
        logger.debug(f"{method} {url}")

        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method,
                    url,
                    params=self._params(params),
                    data=json.dumps(payload) if method != 'GET' else None,
                    headers={'Content-Type': 'application/json'},
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.warning(f"{method} '{path}' failed with status {response.status}: {error_text}")
                        raise RemoteStoreError(
                            f"{method} '{path}' failed with status {response.status}: {error_text}"
                        )
                    text = await response.text()
                    return json.loads(text) if text else None

        except aiohttp.ClientError as e:
            logger.warning(f"HTTP client error during {method} '{path}': {type(e).__name__}: {e}")
            raise RemoteStoreError(f"{method} '{path}' failed: {e}")
        except asyncio.TimeoutError:
            logger.warning(f"Timeout during {method} '{path}' after {self.timeout_seconds}s")
            raise RemoteStoreError(f"{method} '{path}' timed out after {self.timeout_seconds} seconds")
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON from {method} '{path}': {e}")
            raise RemoteStoreError(f"Invalid JSON response for '{path}': {e}")

    async def get(self, path: str) -> Any:
        return await self._request('GET', path)

    async def set(self, path: str, value: Any) -> None:
        await self._request('PUT', path, payload=value)

    async def update(self, path: str, patch: Dict[str, Any]) -> None:
        await self._request('PATCH', path, payload=patch)

    async def ping(self) -> bool:
        try:
            await self._request('GET', '', params={'shallow': 'true'})
            return True
        except RemoteStoreError as e:
            logger.debug(f"Firebase ping failed: {e}")
            return False

    def subscribe(self, path: str, on_change: Callable[[Any], None]) -> Callable[[], None]:
        poll_id = self._next_poll_id
        self._next_poll_id += 1
        task = asyncio.create_task(self._poll_loop(path, on_change))
        self._poll_tasks[poll_id] = task
        logger.debug(f"Subscribed to '{path}' (poll every {self.poll_interval_seconds}s)")

        def unsubscribe():
            poll_task = self._poll_tasks.pop(poll_id, None)
            if poll_task and not poll_task.done():
                poll_task.cancel()

        return unsubscribe

    async def _poll_loop(self, path: str, on_change: Callable[[Any], None]):
        """Poll path and report value changes until cancelled."""
        sentinel = object()
        last_value: Any = sentinel

        while True:
            try:
                value = await self.get(path)
                if last_value is sentinel or value != last_value:
                    last_value = value
                    on_change(value)
            except asyncio.CancelledError:
                raise
            except RemoteStoreError as e:
                logger.debug(f"Subscription poll for '{path}' failed: {e}")
            except Exception as e:
                logger.error(f"Subscriber for '{path}' raised {type(e).__name__}: {e}")

            await asyncio.sleep(self.poll_interval_seconds)

    async def close(self) -> None:
        """Cancel all subscription polls."""
        tasks = list(self._poll_tasks.values())
        self._poll_tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
