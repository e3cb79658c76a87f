"""Recognise Amazon product links and pull the ASIN out of them."""

from __future__ import annotations

import re
from urllib.parse import urlparse

_AMAZON_HOST = re.compile(r'(^|\.)amazon\.[a-z]{2,3}(\.[a-z]{2})?$')
_SHORT_LINK_HOSTS = {'amzn.to', 'amzn.com', 'a.co'}

_ASIN_PATTERNS = [
    re.compile(r'/dp/([A-Z0-9]{10})'),
    re.compile(r'/gp/product/([A-Z0-9]{10})'),
    re.compile(r'/([A-Z0-9]{10})(?:/|$|\?)'),
]


def is_amazon_url(url: str) -> bool:
    host = (urlparse(url).hostname or '').lower()
    if host.startswith('www.'):
        host = host[4:]
    return host in _SHORT_LINK_HOSTS or bool(_AMAZON_HOST.search(host))


def extract_asin(url: str) -> str | None:
    path = urlparse(url).path
    for pattern in _ASIN_PATTERNS:
        match = pattern.search(path)
        if match:
            return match.group(1)
    return None
