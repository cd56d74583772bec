"""Tuya device discovery via the UDP broadcasts the plugs send on the LAN"""
import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import tinytuya

from errors import DiscoveryError

logger = logging.getLogger(__name__)

# Discovery is bounded; the scheduler simply retries on the next tick
DISCOVERY_TIMEOUT = 10.0

# Scans share the broadcast port, so they run one at a time. A scan that
# outlives its timeout finishes on this thread; the next scan queues behind
# it and is dropped unstarted if its own timeout expires first.
_scanner = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tuya-discovery")


async def discover_tuya(
    dev_id: str,
    address: Optional[str] = None,
    timeout: float = DISCOVERY_TIMEOUT
) -> dict:
    """
    Locate a Tuya device by id (and optionally by IP address).

    Listens for the device's UDP broadcast on the discovery thread.

    Args:
        dev_id: Tuya device id
        address: Expected IP address, narrows the search (optional)
        timeout: Discovery timeout in seconds (default: 10.0)

    Returns:
        Broadcast info with at least 'ip' and 'version' keys

    Raises:
        DiscoveryError: device not found, socket error or timeout
    """
    logger.debug(f"Tuya: Starting discovery for {dev_id} (timeout: {timeout}s)")

    scan = functools.partial(tinytuya.find_device, dev_id=dev_id, address=address)
    try:
        info = await asyncio.wait_for(
            asyncio.get_running_loop().run_in_executor(_scanner, scan),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        raise DiscoveryError(f"Discovery timed out after {timeout}s") from None
    except OSError as e:
        raise DiscoveryError(f"Discovery failed: {e}") from e

    if not info or not info.get("ip"):
        raise DiscoveryError(f"Device {dev_id} not found on the network")

    logger.debug(f"Tuya: Discovered device {dev_id} at {info['ip']} (version {info.get('version')})")
    return info
