"""
Filter list sources for adblock.

Filter lists are plain UTF-8 text handed to the engine already loaded.
This module reads them from local files and provides the built-in default
list; fetching lists over the network is the caller's job.
"""

from __future__ import annotations

import logging
from pathlib import Path

from adfilter.config import get_data_dir
from adfilter.exceptions import FilterListLoadError

logger = logging.getLogger(__name__)

DEFAULT_LIST_NAME = "Basic AdBlock"

# Conservative defaults to avoid breaking sites like YouTube
DEFAULT_FILTERS = """\
! Basic AdBlock
||doubleclick.net/gampad/^
||googleadservices.com/pagead/^
||googlesyndication.com/pagead/^
||amazon-adsystem.com/aax2/^
||facebook.com/tr^
||twitter.com/i/analytics^
##.ad:not(.youtube-ad)
##.ads:not(.content-ads)
##.advertisement:not(.site-content)
##.advert:not(.article-advert)
##.banner-ad:not(.site-banner)
##.popup-ad
##div[id*="google_ads"]:not([id*="youtube"])
##div[class*="banner"]:not(.site-banner)
"""


def get_lists_dir() -> Path:
    """Get the directory searched for filter lists named without a path."""
    return get_data_dir() / "lists"


def resolve_list_path(name_or_path: str | Path) -> Path:
    """Resolve a filter list reference.

    Bare names (no directory part) refer to ``<data dir>/lists/<name>.txt``.
    """
    path = Path(name_or_path).expanduser()
    if path.parent == Path(".") and not path.suffix:
        return get_lists_dir() / f"{path.name}.txt"
    return path


def read_filter_list(path: str | Path) -> str:
    """Read a filter list file.

    Raises:
        FilterListLoadError: If the file cannot be read or is not UTF-8.
    """
    path = resolve_list_path(path)
    try:
        with open(path, encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        logger.warning("Failed to read filter list %s: %s", path, e)
        raise FilterListLoadError(path, str(e)) from e
    except UnicodeDecodeError as e:
        logger.warning("Filter list %s is not valid UTF-8: %s", path, e)
        raise FilterListLoadError(path, "not valid UTF-8") from e

    logger.debug("Read filter list: %s (%d lines)", path, content.count("\n") + 1)
    return content
