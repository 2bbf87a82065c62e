"""
Raindrop.io integration manager

Handles all interactions with the Raindrop.io REST API, including highlight
retrieval, trash lookups and token validation.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Callable, Set, Tuple
import time
from functools import wraps

import requests
from loguru import logger
from beartype import beartype as typecheck

from .exceptions import (
    RaindropAuthError,
    RaindropConnectionError,
    RaindropError,
    RaindropHTTPError,
    RaindropRateLimitError,
)

BASE_URL = "https://api.raindrop.io/rest/v1"
PAGE_SIZE = 50
TRASH_COLLECTION_ID = -99


def retry_on_failure(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    retry_on: Tuple[type, ...] = (RaindropConnectionError,),
):
    """
    Retry decorator for API calls that may fail due to network issues.

    Parameters
    ----------
    max_attempts : int
        Maximum number of retry attempts
    delay : float
        Initial delay between retries in seconds
    backoff : float
        Multiplier for delay between retries
    retry_on : Tuple[type, ...]
        Exception types that trigger a retry; anything else propagates at once
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            current_delay = delay

            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    if attempt == max_attempts - 1:
                        raise

                    logger.warning(
                        f"Attempt {attempt + 1}/{max_attempts} failed for {func.__name__}: {e}. "
                        f"Retrying in {current_delay:.1f}s..."
                    )
                    time.sleep(current_delay)
                    current_delay *= backoff

        return wrapper

    return decorator


@dataclass
class HighlightRecord:
    """A single highlight as returned by the Raindrop.io highlights endpoint."""

    id: str
    raindrop_ref: int
    text: str = ""
    title: str = ""
    color: str = ""
    note: str = ""
    created_at: str = ""
    updated_at: str = ""
    tags: List[str] = field(default_factory=list)
    link: str = ""

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "HighlightRecord":
        """Build a record from a raw API item."""
        return cls(
            id=str(item["_id"]),
            raindrop_ref=int(item.get("raindropRef") or 0),
            text=item.get("text") or "",
            title=item.get("title") or "",
            color=item.get("color") or "",
            note=item.get("note") or "",
            created_at=item.get("created") or "",
            updated_at=item.get("lastUpdate") or "",
            tags=[str(t) for t in item.get("tags") or []],
            link=item.get("link") or "",
        )


class RaindropManager:
    """
    Manager class for all Raindrop.io operations.

    The API token is passed to each call rather than stored, so a token
    changed in the configuration is picked up by the next pass.
    """

    @typecheck
    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the Raindrop manager.

        Parameters
        ----------
        base_url : str
            Root of the Raindrop.io REST API
        timeout : float
            Timeout in seconds applied to every request
        session : Optional[requests.Session]
            HTTP session to reuse, a new one is created if None
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

        logger.debug(f"RaindropManager initialized for {self.base_url}")

    @retry_on_failure(max_attempts=3, delay=1.0)
    def _request(
        self, token: str, path: str, params: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """
        Perform an authenticated GET request and decode the JSON body.

        Raises
        ------
        RaindropAuthError
            On HTTP 401
        RaindropRateLimitError
            On HTTP 429
        RaindropHTTPError
            On any other non-2xx status
        RaindropConnectionError
            If the server cannot be reached or the request times out
        """
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(
                url,
                headers={"Authorization": f"Bearer {token}"},
                params=params,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise RaindropConnectionError(
                f"Could not reach Raindrop.io ({path}): {e}"
            ) from e

        if response.status_code == 401:
            raise RaindropAuthError(
                "Invalid Raindrop.io API token. Please check your settings."
            )
        if response.status_code == 429:
            raise RaindropRateLimitError(
                "Raindrop.io rate limit exceeded. Please wait and try again."
            )
        if not response.ok:
            raise RaindropHTTPError(
                f"Raindrop.io API error: {response.status_code} {response.reason}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise RaindropHTTPError(
                f"Raindrop.io returned invalid JSON for {path}: {e}",
                status_code=response.status_code,
            ) from e

    def _paginate(self, token: str, path: str) -> List[Dict[str, Any]]:
        """Collect items page by page until a short or empty page."""
        items = []
        page = 0

        while True:
            response = self._request(
                token, path, params={"page": str(page), "perpage": str(PAGE_SIZE)}
            )

            if not isinstance(response, dict):
                raise RaindropHTTPError(
                    f"Expected dict response from {path}, got {type(response)}"
                )

            if not response.get("result", False):
                logger.warning(f"Raindrop.io answered result=false on {path}")
                break

            page_items = response.get("items") or []
            if not page_items:
                break

            items.extend(page_items)
            logger.debug(
                f"Fetched page {page} of {path} ({len(page_items)} items, total so far: {len(items)})"
            )

            if len(page_items) < PAGE_SIZE:
                break

            page += 1

        return items

    @typecheck
    def fetch_all_highlights(self, token: str) -> List[HighlightRecord]:
        """
        Retrieve every highlight of the account.

        Returns
        -------
        List[HighlightRecord]
            All highlights, in the order the API returned them
        """
        logger.info("Fetching all highlights from Raindrop.io...")

        highlights = []
        for item in self._paginate(token, "/highlights"):
            if not isinstance(item, dict) or "_id" not in item:
                logger.warning(f"Skipping highlight without ID: {item}")
                continue
            try:
                highlights.append(HighlightRecord.from_api(item))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed highlight {item.get('_id')}: {e}")

        logger.info(f"Retrieved {len(highlights)} total highlights from Raindrop.io")
        return highlights

    @typecheck
    def fetch_trashed_bookmark_refs(self, token: str) -> Set[int]:
        """
        Retrieve the ids of the bookmarks currently in the trash.

        Returns
        -------
        Set[int]
            Bookmark references (``raindropRef`` values) found in the trash
        """
        logger.info("Fetching trashed bookmarks from Raindrop.io...")

        refs = set()
        for item in self._paginate(token, f"/raindrops/{TRASH_COLLECTION_ID}"):
            if not isinstance(item, dict) or "_id" not in item:
                continue
            try:
                refs.add(int(item["_id"]))
            except (TypeError, ValueError):
                logger.warning(f"Skipping trashed bookmark with invalid ID: {item['_id']!r}")

        logger.info(f"Found {len(refs)} trashed bookmarks")
        return refs

    @typecheck
    def validate_token(self, token: str) -> bool:
        """Check that ``token`` is accepted by Raindrop.io."""
        try:
            user = self._request(token, "/user")
        except RaindropError as e:
            logger.debug(f"Token validation failed: {e}")
            return False

        logger.debug(
            f"Successfully connected to Raindrop.io for user: "
            f"{(user.get('user') or {}).get('_id', 'unknown')}"
        )
        return True


class RemoteSnapshot:
    """
    Remote state seen during one sync pass.

    Each query hits the API at most once per pass, so deletion detection
    and the import step share the same highlight list.
    """

    def __init__(self, raindrop, token: str):
        self.raindrop = raindrop
        self.token = token
        self._highlights: Optional[List[HighlightRecord]] = None
        self._trashed_refs: Optional[Set[int]] = None

    def highlights(self) -> List[HighlightRecord]:
        if self._highlights is None:
            self._highlights = list(self.raindrop.fetch_all_highlights(self.token))
        return self._highlights

    def trashed_refs(self) -> Set[int]:
        if self._trashed_refs is None:
            self._trashed_refs = set(
                self.raindrop.fetch_trashed_bookmark_refs(self.token)
            )
        return self._trashed_refs
