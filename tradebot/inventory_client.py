"""
Community inventory client.

HTTP implementation of the inventory-fetch collaborator. Pages through the
public inventory endpoint and joins assets with their descriptions.
"""

import asyncio
import logging
from typing import Optional

import aiohttp
import orjson

from .errors import InventoryFetchError
from .types import Item

logger = logging.getLogger(__name__)


def parse_inventory_page(
    data: dict,
    collection_id: str,
    sub_collection_id: str,
    tradable_only: bool = True,
) -> list[Item]:
    """
    Build item records from one inventory response page.

    Args:
        data: Decoded response body
        collection_id: Collection the page belongs to
        sub_collection_id: Sub-collection the page belongs to
        tradable_only: Drop items whose description is not tradable

    Returns:
        Items in asset order
    """
    descriptions = {
        (str(d.get("classid")), str(d.get("instanceid", "0"))): d
        for d in data.get("descriptions") or []
    }

    items = []
    for asset in data.get("assets") or []:
        description = descriptions.get(
            (str(asset.get("classid")), str(asset.get("instanceid", "0"))),
            {},
        )
        if tradable_only and not description.get("tradable", 0):
            continue

        metadata = dict(description)
        metadata["amount"] = asset.get("amount", "1")
        metadata["classid"] = str(asset.get("classid"))
        metadata["instanceid"] = str(asset.get("instanceid", "0"))

        items.append(Item(
            collection_id=collection_id,
            sub_collection_id=sub_collection_id,
            item_id=str(asset["assetid"]),
            metadata=metadata,
        ))
    return items


class SteamInventoryClient:
    """
    Fetches tracked inventories over HTTP.

    A failed fetch is retried up to `max_retries` times before
    InventoryFetchError is raised.
    """

    DEFAULT_BASE_URL = "https://steamcommunity.com"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        proxy: Optional[str] = None,
        page_size: int = 2000,
        max_retries: int = 5,
        retry_delay_s: float = 1.0,
        timeout_seconds: float = 10.0,
        tradable_only: bool = True,
    ):
        """
        Initialize the client.

        Args:
            base_url: Community base URL
            proxy: Optional HTTP proxy URL
            page_size: Assets requested per page
            max_retries: Retries after the first failed attempt
            retry_delay_s: Pause between attempts
            timeout_seconds: Request timeout
            tradable_only: Skip non-tradable items
        """
        self._base_url = base_url.rstrip("/")
        self._proxy = proxy
        self._page_size = page_size
        self._max_retries = max_retries
        self._retry_delay_s = retry_delay_s
        self._timeout_seconds = timeout_seconds
        self._tradable_only = tradable_only
        self._session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure HTTP session is created."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _get_page(
        self,
        account_id: str,
        collection_id: str,
        sub_collection_id: str,
        start_assetid: Optional[str] = None,
    ) -> dict:
        session = await self._ensure_session()
        url = f"{self._base_url}/inventory/{account_id}/{collection_id}/{sub_collection_id}"
        params = {"l": "english", "count": str(self._page_size)}
        if start_assetid:
            params["start_assetid"] = start_assetid

        try:
            async with session.get(url, params=params, proxy=self._proxy) as resp:
                body = await resp.read()
                if resp.status != 200:
                    raise InventoryFetchError(
                        f"Inventory request failed: {resp.status} - {body[:200]!r}"
                    )
        except aiohttp.ClientError as e:
            raise InventoryFetchError(f"Inventory request failed: {e}") from e

        data = orjson.loads(body) if body else {}
        if not data or data.get("success", 1) != 1:
            raise InventoryFetchError(f"Inventory unavailable: {data.get('error') if data else 'empty body'}")
        return data

    async def _fetch_once(
        self,
        account_id: str,
        collection_id: str,
        sub_collection_id: str,
    ) -> list[Item]:
        items: list[Item] = []
        start_assetid = None
        while True:
            data = await self._get_page(account_id, collection_id, sub_collection_id, start_assetid)
            items.extend(parse_inventory_page(
                data, collection_id, sub_collection_id, self._tradable_only,
            ))
            if not data.get("more_items") or not data.get("last_assetid"):
                return items
            start_assetid = str(data["last_assetid"])

    async def fetch_inventory(
        self,
        account_id: str,
        collection_id: str,
        sub_collection_id: str,
    ) -> list[Item]:
        """
        Fetch every tradable item of one pair.

        Args:
            account_id: Account whose inventory is listed
            collection_id: Collection (app) id
            sub_collection_id: Sub-collection (context) id

        Returns:
            Item records

        Raises:
            InventoryFetchError: after the retry budget is spent
        """
        collection_id = str(collection_id)
        sub_collection_id = str(sub_collection_id)
        retries = 0
        while True:
            try:
                return await self._fetch_once(account_id, collection_id, sub_collection_id)
            except (InventoryFetchError, asyncio.TimeoutError, orjson.JSONDecodeError) as e:
                logger.warning(
                    f"Error getting {account_id}, collection: {collection_id}, "
                    f"sub-collection: {sub_collection_id}: {e}"
                )
                if retries >= self._max_retries:
                    raise InventoryFetchError(
                        f"Giving up on {account_id} {collection_id}/{sub_collection_id}: {e}"
                    ) from e
                retries += 1
                logger.info(
                    f"Retrying {account_id}, collection: {collection_id}, "
                    f"sub-collection: {sub_collection_id} ({retries}/{self._max_retries})"
                )
                await asyncio.sleep(self._retry_delay_s)
