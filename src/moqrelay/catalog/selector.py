"""
Random channel / media URL selection.
"""

from __future__ import annotations

import random

from moqrelay.catalog.channel_catalog import ChannelCatalog
from moqrelay.infra.exceptions import EmptyCatalogError
from moqrelay.infra.logging import get_logger

logger = get_logger(__name__)


def select_random_media_url(
    catalog: ChannelCatalog,
    rng: random.Random | None = None,
) -> tuple[str, str]:
    """
    Pick a channel uniformly at random, then one of its media URLs uniformly.

    Args:
        catalog: Loaded channel catalog
        rng: Random source; a freshly seeded one is used when omitted

    Returns:
        (channel_name, media_url)

    Raises:
        EmptyCatalogError: If no channel has a media URL.
    """
    names = [name for name in catalog.names() if catalog[name].media_urls]
    if not names:
        raise EmptyCatalogError("no channel with a resolved media URL")

    rng = rng or random.Random()
    name = rng.choice(names)
    url = rng.choice(catalog[name].media_urls)

    logger.info("channel_selected", channel=name, media_url=url)
    return name, url
