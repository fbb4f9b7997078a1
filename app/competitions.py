"""
Upstream client for karate competition data.

Builds one nested competition document: the competition, its categories,
and for every category its competitors and ladder (stages with pairs).
Category sub-resources are fetched in parallel.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

logger = logging.getLogger("competitions")


class UpstreamError(Exception):
    """Raised when the competition source cannot produce a document."""
    pass


class CompetitionClient:
    """
    Usage:
        client = CompetitionClient("https://example.org/api")
        document = client.fetch_competition(42)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_workers: int = 8,
        session: Optional[requests.Session] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_workers = max_workers
        self._session = session or requests.Session()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        reraise=True,
    )
    def _get_with_retry(self, path: str) -> requests.Response:
        return self._session.get(f"{self._base_url}/{path}", timeout=self._timeout)

    def _get(self, path: str) -> Any:
        """GET a JSON resource, raising UpstreamError on any failure."""
        try:
            response = self._get_with_retry(path)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.error(f"Upstream request failed: {path} - {e}")
            raise UpstreamError(f"{path}: {e}") from e
        except ValueError as e:
            raise UpstreamError(f"{path}: invalid JSON ({e})") from e

    def fetch_competition(self, competition_id) -> Dict[str, Any]:
        """
        Fetch a competition with all categories expanded.

        Raises:
            UpstreamError: If the competition or any category part fails
        """
        competition = self._get(f"competitions/{competition_id}")
        if not isinstance(competition, dict):
            raise UpstreamError(f"competitions/{competition_id}: unexpected payload")

        categories: List[Dict[str, Any]] = competition.get("categories") or []
        if categories:
            with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                jobs = [
                    (
                        category,
                        pool.submit(self._get, f"categories/{category['id']}/competitors"),
                        pool.submit(self._get, f"categories/{category['id']}/ladder"),
                    )
                    for category in categories
                ]
                for category, competitors, ladder in jobs:
                    category["competitors"] = competitors.result()
                    category["ladder"] = _normalize_ladder(ladder.result())

        competition["categories"] = categories
        logger.info(f"Fetched competition {competition_id} ({len(categories)} categories)")
        return competition


def _normalize_ladder(ladder: Any) -> Dict[str, Any]:
    """Ensure every ladder has a stages list and every stage a pairs list."""
    if not isinstance(ladder, dict):
        return {"stages": []}
    stages = ladder.get("stages") or []
    for stage in stages:
        stage.setdefault("pairs", [])
    ladder["stages"] = stages
    return ladder
