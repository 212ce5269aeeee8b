"""
Client IP handling and optional IP geolocation.
"""

import hashlib
import ipaddress
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from fastapi import Request

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoLocation:
    country_code: Optional[str] = None
    city: Optional[str] = None


NO_LOCATION = GeoLocation()


def get_client_ip(request: Request) -> str:
    """Extract the client's real IP address from the request."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else "unknown"


def hash_ip(ip_address: str, salt: str) -> str:
    """Salted SHA-256 of the client IP. The plaintext address is never stored."""
    return hashlib.sha256(f"{ip_address}{salt}".encode("utf-8")).hexdigest()


def _is_public_ip(ip_address: str) -> bool:
    try:
        parsed = ipaddress.ip_address(ip_address)
    except ValueError:
        return False
    return not (parsed.is_private or parsed.is_loopback or parsed.is_reserved
                or parsed.is_link_local or parsed.is_multicast)


class NullGeoResolver:
    """Default resolver: location is not collected."""

    def resolve(self, ip_address: str) -> GeoLocation:
        return NO_LOCATION


class HttpGeoResolver:
    """Resolves country and city from free ipapi-style JSON endpoints."""

    def __init__(self, api_urls=None, timeout: int = 5, session: Optional[requests.Session] = None):
        self.api_urls = api_urls or [
            "https://ipapi.co/{ip}/json/",
            "https://ipinfo.io/{ip}/json"
        ]
        self.timeout = timeout
        self.session = session or requests.Session()

    def resolve(self, ip_address: str) -> GeoLocation:
        if not ip_address or not _is_public_ip(ip_address):
            return NO_LOCATION

        for api_url in self.api_urls:
            try:
                response = self.session.get(api_url.format(ip=ip_address), timeout=self.timeout)
                if response.status_code == 200:
                    return self._parse_location_data(response.json())
            except (requests.RequestException, ValueError) as e:
                logger.warning(f"Failed to get location from {api_url}: {e}")
                continue

        return NO_LOCATION

    def _parse_location_data(self, data: Dict[str, Any]) -> GeoLocation:
        """Parse location data from either API's response shape."""
        if not isinstance(data, dict):
            return NO_LOCATION

        country = data.get("country_code") or data.get("country")
        if not isinstance(country, str) or len(country) != 2:
            return NO_LOCATION

        city = data.get("city")
        if not isinstance(city, str) or not city.strip():
            city = None
        return GeoLocation(country_code=country.upper(), city=city[:100] if city else None)


def create_geo_resolver(settings):
    if settings.GEO_LOOKUP_ENABLED:
        return HttpGeoResolver()
    return NullGeoResolver()
