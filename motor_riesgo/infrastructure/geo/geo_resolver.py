"""
geo_resolver.py
---------------
Reverse geocoding de coordenadas GPS a ciudad / estado / país.

Usa la API de Nominatim (formato jsonv2) vía httpx con timeout estricto.
Es best-effort: cualquier error HTTP, timeout o respuesta sin ciudad
retorna GeoLocation.unknown() y el factor de ubicación lo trata como
"ubicación no disponible". Nunca lanza excepciones hacia el pipeline.
"""

import logging

import httpx

from motor_riesgo.domain.entities import GeoLocation

logger = logging.getLogger(__name__)


class NominatimGeoResolver:

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 1.5,
        user_agent: str = "motor-riesgo-p2p/1.0",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url        = url
        self.timeout    = timeout_seconds
        self.user_agent = user_agent
        self._transport = transport

    async def resolve(self, latitude: float, longitude: float) -> GeoLocation:
        params = {
            "lat":            latitude,
            "lon":            longitude,
            "format":         "jsonv2",
            "accept-language": "en",
            "zoom":           10,
        }
        try:
            async with httpx.AsyncClient(
                timeout   = self.timeout,
                headers   = {"User-Agent": self.user_agent},
                transport = self._transport,
            ) as client:
                response = await client.get(self.url, params=params)
                response.raise_for_status()
                data = response.json()

        except httpx.TimeoutException:
            logger.warning(f"[Geo] Timeout geocodificando ({latitude}, {longitude})")
            return GeoLocation.unknown()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[Geo] Error geocodificando ({latitude}, {longitude}): {e}")
            return GeoLocation.unknown()

        address = data.get("address") or {}
        city = address.get("city") or address.get("town") or address.get("village")
        if not city:
            logger.info(f"[Geo] Sin ciudad para ({latitude}, {longitude})")
            return GeoLocation.unknown()

        return GeoLocation(
            city    = city,
            state   = address.get("state", "unknown"),
            country = address.get("country", "unknown"),
        )
