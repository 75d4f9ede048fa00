"""Filter for app-install prompts, store banners and off-domain pages."""
from __future__ import annotations

import logging
import re
from typing import Iterable, Optional
from urllib.parse import urlsplit

from .errors import DecoyDetected
from .settings import SiteProfile

LOGGER = logging.getLogger(__name__)


class DecoyFilter:
    def __init__(
        self,
        *,
        url_patterns: Iterable[str] = (),
        title_patterns: Iterable[str] = (),
        allowed_hosts: Iterable[str] = (),
    ) -> None:
        self.url_res = [re.compile(p, re.IGNORECASE) for p in url_patterns]
        self.title_res = [re.compile(p, re.IGNORECASE) for p in title_patterns]
        self.allowed_hosts = tuple(h.lower().lstrip(".") for h in allowed_hosts)

    @classmethod
    def from_profile(cls, site: SiteProfile) -> "DecoyFilter":
        return cls(
            url_patterns=site.decoy_url_patterns,
            title_patterns=site.decoy_title_patterns,
            allowed_hosts=site.canonical_hosts,
        )

    def host_allowed(self, url: str) -> bool:
        """True when the URL's host is one of the canonical hosts (or a subdomain)."""
        if not self.allowed_hosts:
            return True
        try:
            host = (urlsplit(url).hostname or "").lower()
        except ValueError:
            return False
        return any(host == h or host.endswith("." + h) for h in self.allowed_hosts)

    def reason(
        self,
        url: Optional[str] = None,
        title: Optional[str] = None,
        *,
        check_host: bool = True,
    ) -> Optional[str]:
        if url:
            for pattern in self.url_res:
                if pattern.search(url):
                    return f"url matches {pattern.pattern}"
            if check_host and not self.host_allowed(url):
                return "off-domain host"
        if title:
            for pattern in self.title_res:
                if pattern.search(title):
                    return f"title matches {pattern.pattern}"
        return None

    def is_decoy(
        self, url: Optional[str] = None, title: Optional[str] = None, *, check_host: bool = True
    ) -> bool:
        return self.reason(url, title, check_host=check_host) is not None

    def check(
        self, url: Optional[str] = None, title: Optional[str] = None, *, check_host: bool = True
    ) -> None:
        """Raise ``DecoyDetected`` when the URL or title looks like a decoy page."""
        why = self.reason(url, title, check_host=check_host)
        if why:
            LOGGER.debug("Decoy %s: %s", url or title, why)
            raise DecoyDetected(f"{url or title}: {why}")
