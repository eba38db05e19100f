"""Site -> device aggregation into Grafana Alloy discovery targets.

Enumeration is strictly sequential: the devices of site N+1 are not requested
until site N is exhausted, and the first error from either level stops the
whole walk (no further sites or pages are fetched).
"""
import logging
import time
from typing import Iterator, List, Optional

from .api_client import RequestContext, UnifiApiClient
from .models import Target

logger = logging.getLogger(__name__)


def iter_targets(client: UnifiApiClient, ctx: Optional[RequestContext] = None) -> Iterator[Target]:
    ctx = ctx or RequestContext()
    for idx, site in enumerate(client.iter_sites(ctx), 1):
        found = 0
        for device in client.iter_devices(site.id, ctx):
            found += 1
            yield Target.from_device(device)
        logger.debug(f"[sites] site={idx} id={site.id} devices_found={found}")


def collect_targets(client: UnifiApiClient, ctx: Optional[RequestContext] = None) -> List[Target]:
    """Materialise the full discovery document; all-or-nothing."""
    start = time.monotonic()
    targets = list(iter_targets(client, ctx))
    duration = round(time.monotonic() - start, 3)
    logger.info(f"[discovery] targets={len(targets)} duration_sec={duration}")
    return targets


__all__ = ["iter_targets", "collect_targets"]
