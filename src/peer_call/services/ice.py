"""ICE server configuration."""

import logging
from typing import List, Optional

import aiohttp
from aiortc import RTCConfiguration, RTCIceServer

from ..models.schemas import IceServer
from ..settings import Settings

logger = logging.getLogger(__name__)


async def resolve_ice_servers(
    settings: Settings, session: Optional[aiohttp.ClientSession] = None
) -> List[IceServer]:
    """Return the ICE servers to use for the next call.

    When ``TURN_CREDENTIALS_URL`` is configured, short-lived TURN credentials
    are fetched from it; any failure falls back to the static ``ICE_SERVERS``
    list.

    Args:
        settings: Application settings
        session: Optional aiohttp session (a temporary one is used otherwise)

    Returns:
        Ordered ICE server list
    """
    if not settings.turn_credentials_url:
        return list(settings.ice_servers)

    owned = session is None
    if owned:
        session = aiohttp.ClientSession()
    try:
        async with session.get(
            settings.turn_credentials_url, timeout=aiohttp.ClientTimeout(total=5)
        ) as response:
            response.raise_for_status()
            entries = await response.json()
        servers = [IceServer(**entry) for entry in entries]
        if not servers:
            raise ValueError("empty ICE server list")
        logger.info(f"Loaded {len(servers)} ICE servers from credential endpoint")
        return servers
    except Exception as e:
        logger.warning(f"Failed to load TURN servers, falling back to static list: {e}")
        return list(settings.ice_servers)
    finally:
        if owned:
            await session.close()


def build_rtc_configuration(servers: List[IceServer]) -> RTCConfiguration:
    """Convert ICE server entries into an aiortc ``RTCConfiguration``."""
    ice_servers = [
        RTCIceServer(urls=server.url_list, username=server.username, credential=server.credential)
        for server in servers
    ]
    has_turn = any(url.startswith(("turn:", "turns:")) for server in servers for url in server.url_list)
    if not has_turn:
        logger.debug("No TURN server configured; relayed candidates unavailable")
    return RTCConfiguration(iceServers=ice_servers)
