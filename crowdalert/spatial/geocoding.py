"""
geocoding.py — Postal-code ↔ coordinate resolution via Google Geocoding.

═══════════════════════════════════════════════════════════════════════════
GEOCODING API
═══════════════════════════════════════════════════════════════════════════

Endpoint: {GEOCODING_BASE_URL}/geocode/json

    Reverse:  ?latlng=19.076,72.8777&key=...
              → results[0].address_components[] with types ["postal_code"]
    Forward:  ?address=400001&key=...
              → results[0].geometry.location {lat, lng}

Response `status`:
    OK                → parse results
    ZERO_RESULTS      → NotFoundError
    anything else     → UpstreamUnavailableError
                        (OVER_QUERY_LIMIT, REQUEST_DENIED, INVALID_REQUEST, ...)

═══════════════════════════════════════════════════════════════════════════
CACHING
═══════════════════════════════════════════════════════════════════════════

Postal codes are stable, and the same PostalCode → GeoPoint lookup is
issued once per audience candidate. Successful forward lookups are cached:

    1. In-process MemoryTTLCache (always on, bounded, TTL)
    2. Redis under "geocode:pincode:<code>" (when REDIS_ENABLED)

NotFound results are not cached. Cache errors count as misses.
Reverse lookups (event coordinates) are not cached — each report has its
own coordinates.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from crowdalert.core.cache import MemoryTTLCache, cache_get, cache_set
from crowdalert.core.config import settings
from crowdalert.core.errors import (
    InvalidInputError,
    NotFoundError,
    UpstreamUnavailableError,
)
from crowdalert.core.retry import RetryPolicy, retry_async
from crowdalert.spatial.distance import GeoPoint

logger = logging.getLogger(__name__)

SERVICE_NAME = "geocoding"
POSTAL_CODE_TYPE = "postal_code"
REDIS_KEY_PREFIX = "geocode:pincode:"


def default_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_retries=settings.GEOCODING_MAX_RETRIES,
        backoff_base_seconds=settings.GEOCODING_BACKOFF_BASE,
        backoff_max_seconds=settings.GEOCODING_BACKOFF_MAX,
    )


class GeoResolver:
    """
    Resolves coordinates to postal codes and back.

    The HTTP client is borrowed: whoever constructs it closes it.

    Usage:
        async with httpx.AsyncClient() as http:
            resolver = GeoResolver(http, api_key="...")
            pincode = await resolver.resolve_pincode(GeoPoint(19.076, 72.8777))
            centre = await resolver.resolve_coordinates(pincode)
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        cache: Optional[MemoryTTLCache[GeoPoint]] = None,
        use_redis: bool = True,
    ):
        self._http = http_client
        self.api_key = api_key if api_key is not None else settings.GOOGLE_MAPS_API_KEY
        self.base_url = (base_url or settings.GEOCODING_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.GEOCODING_TIMEOUT
        self.retry_policy = retry_policy or default_retry_policy()
        self.cache = cache if cache is not None else MemoryTTLCache(
            ttl_seconds=settings.GEOCODE_CACHE_TTL,
            max_entries=settings.GEOCODE_CACHE_MAX_ENTRIES,
        )
        self.use_redis = use_redis

    # ── HTTP ──

    async def _request(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Single geocoding call. Returns the results list (may be empty)."""
        query = dict(params)
        if self.api_key:
            query["key"] = self.api_key

        try:
            response = await self._http.get(
                f"{self.base_url}/geocode/json",
                params=query,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailableError(
                SERVICE_NAME, f"HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(SERVICE_NAME, type(e).__name__) from e
        except ValueError as e:
            raise UpstreamUnavailableError(SERVICE_NAME, "invalid JSON body") from e

        if not isinstance(data, dict):
            raise UpstreamUnavailableError(SERVICE_NAME, "unexpected response shape")

        status = data.get("status", "OK")
        if status == "ZERO_RESULTS":
            return []
        if status != "OK":
            raise UpstreamUnavailableError(
                SERVICE_NAME, status,
                error_message=data.get("error_message", ""),
            )

        results = data.get("results") or []
        if not isinstance(results, list):
            raise UpstreamUnavailableError(SERVICE_NAME, "results is not a list")
        return results

    async def _geocode(self, params: Dict[str, Any], label: str) -> List[Dict[str, Any]]:
        return await retry_async(
            lambda: self._request(params),
            self.retry_policy,
            retry_on=(UpstreamUnavailableError,),
            label=f"{SERVICE_NAME} {label}",
        )

    # ── Reverse: coordinates → postal code ──

    async def resolve_pincode(self, point: GeoPoint) -> str:
        """
        Postal code of the area containing ``point``.

        Raises
        ------
        NotFoundError
            No result, or the first result has no postal_code component.
        UpstreamUnavailableError
            Transport, status or parse failure (after retries).
        """
        results = await self._geocode(
            {"latlng": f"{point.latitude},{point.longitude}"},
            label=f"latlng={point.latitude},{point.longitude}",
        )
        if not results:
            raise NotFoundError(
                "postal_code", latitude=point.latitude, longitude=point.longitude,
            )

        first = results[0]
        components = (first.get("address_components") or []) if isinstance(first, dict) else None
        if not isinstance(components, list) or not all(
            isinstance(c, dict) and isinstance(c.get("types") or [], list)
            for c in components
        ):
            raise UpstreamUnavailableError(SERVICE_NAME, "malformed address_components")

        for component in components:
            if POSTAL_CODE_TYPE in (component.get("types") or []):
                postal_code = component.get("long_name")
                if postal_code:
                    logger.debug(
                        "Resolved (%.4f, %.4f) → %s",
                        point.latitude, point.longitude, postal_code,
                    )
                    return str(postal_code)

        raise NotFoundError(
            "postal_code", latitude=point.latitude, longitude=point.longitude,
        )

    # ── Forward: postal code → coordinates ──

    async def resolve_coordinates(self, code: str) -> GeoPoint:
        """
        Representative point (geometry centroid) of a postal code.

        Raises
        ------
        InvalidInputError
            Blank postal code.
        NotFoundError
            No geocoding result.
        UpstreamUnavailableError
            Transport, status or parse failure (after retries).
        """
        code = (code or "").strip()
        if not code:
            raise InvalidInputError("Postal code must not be blank", field="pincode")

        cached = self.cache.get(code)
        if cached is not None:
            return cached

        redis_key = f"{REDIS_KEY_PREFIX}{code}"
        if self.use_redis:
            stored = await cache_get(redis_key)
            if stored:
                try:
                    point = GeoPoint(float(stored["lat"]), float(stored["lon"]))
                except (KeyError, TypeError, ValueError, InvalidInputError):
                    logger.warning("Discarding malformed cache entry %s", redis_key)
                else:
                    self.cache.set(code, point)
                    return point

        results = await self._geocode({"address": code}, label=f"address={code}")
        if not results:
            raise NotFoundError("coordinates", pincode=code)

        try:
            location = results[0]["geometry"]["location"]
            point = GeoPoint(float(location["lat"]), float(location["lng"]))
        except (KeyError, TypeError, ValueError, InvalidInputError) as e:
            raise UpstreamUnavailableError(
                SERVICE_NAME, "malformed geometry", pincode=code,
            ) from e

        self.cache.set(code, point)
        if self.use_redis:
            await cache_set(redis_key, point.to_dict(), ttl=settings.GEOCODE_CACHE_TTL)

        logger.debug("Resolved %s → (%.4f, %.4f)", code, point.latitude, point.longitude)
        return point
