"""
JSON/GeoJSON source adapters over one or more provider endpoints.

Endpoints of one adapter are queried concurrently and their results are
unioned; a failing endpoint contributes nothing and does not abort the
others. Only when every endpoint fails does the fetch itself fail.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Dict, List, Optional

import httpx

from core.exceptions import APIExtractionError, DataFormatError
from ingestion.base import SourceAdapter
from schemas.normalized import CanonicalRecord

logger = logging.getLogger(__name__)


class APIExtractor(SourceAdapter):
    """
    Base for adapters backed by JSON HTTP APIs.

    Features:
    - JSON decoding with DataFormatError on malformed payloads
    - Concurrent multi-endpoint fetch with per-endpoint failure isolation
    - Shape-drift tolerance via extract_list()
    """

    accept = "application/json"

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """GET url and decode its JSON body"""
        response = await self._get(client, url, params=params, headers={"Accept": self.accept})

        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DataFormatError(
                "Failed to parse JSON response",
                context={
                    "api_url": url,
                    "source_name": self.source_name,
                    "response_body": response.text[:500]
                },
                original_exception=e
            )

    async def _fetch_endpoints(
        self,
        calls: Dict[str, Awaitable[List[CanonicalRecord]]],
    ) -> List[CanonicalRecord]:
        """
        Run endpoint fetches concurrently and union their records.

        Args:
            calls: Endpoint name -> coroutine returning that endpoint's records

        Raises:
            APIExtractionError: If every endpoint failed
        """
        names = list(calls.keys())
        results = await asyncio.gather(*calls.values(), return_exceptions=True)

        records: List[CanonicalRecord] = []
        failed: List[str] = []

        for name, result in zip(names, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                failed.append(name)
                context = result.to_dict() if hasattr(result, "to_dict") else {"error": str(result)}
                logger.warning(
                    f"{self.source_name}: endpoint {name} failed: {result}",
                    extra={"error_context": context}
                )
                continue
            logger.debug(f"{self.source_name}: endpoint {name} returned {len(result)} records")
            records.extend(result)

        if names and len(failed) == len(names):
            raise APIExtractionError(
                f"All endpoints failed for {self.source_name}",
                context={"source_name": self.source_name, "endpoints": names}
            )

        return records

    def extract_list(self, data: Any, *keys: str) -> List[Dict[str, Any]]:
        """
        Pull the record list out of a payload.

        Accepts a bare list or a dict holding the list under the first
        present key. Anything else is shape drift: logged, zero records.
        """
        if isinstance(data, list):
            items = data
        elif isinstance(data, dict):
            items = None
            for key in keys:
                if key in data:
                    items = data[key]
                    break
        else:
            items = None

        if not isinstance(items, list):
            logger.warning(
                f"{self.source_name}: unexpected payload shape "
                f"({type(data).__name__}, keys={list(data.keys())[:10] if isinstance(data, dict) else None})"
            )
            return []

        return [item for item in items if isinstance(item, dict)]
