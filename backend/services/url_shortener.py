"""URL shortening through free public services, falling back to the long URL."""

from __future__ import annotations

import logging

import requests

import config

logger = logging.getLogger("zpl.shortener")

TIMEOUT = 10


def shorten_url(long_url: str, session: requests.Session | None = None) -> str:
    """Try is.gd then TinyURL; return ``long_url`` if neither helps.

    A result only counts when it looks like a URL and is shorter than the
    input.
    """
    session = session or requests.Session()
    isgd_url, tinyurl_url = config.SHORTENER_URLS

    attempts = [
        ("is.gd", lambda: session.post(
            isgd_url, data={"format": "simple", "url": long_url}, timeout=TIMEOUT,
        )),
        ("tinyurl", lambda: session.get(
            tinyurl_url, params={"url": long_url}, timeout=TIMEOUT,
        )),
    ]
    for name, call in attempts:
        try:
            resp = call()
            if resp.ok:
                short = resp.text.strip()
                if short.startswith("http") and len(short) < len(long_url):
                    logger.info("Shortened with %s: %s", name, short)
                    return short
        except requests.RequestException as e:
            logger.info("%s failed: %s", name, e)

    logger.warning("All URL shortening services failed, using original URL")
    return long_url
