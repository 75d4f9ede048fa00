"""Canonical product id resolution from arbitrary input URL shapes."""
from __future__ import annotations

import logging
import re
from typing import Iterable, Optional
from urllib.parse import parse_qs, quote, unquote, urlsplit

from .errors import ProductIdNotFound
from .settings import SiteProfile

LOGGER = logging.getLogger(__name__)


class IdentityResolver:
    """Derive a stable product id from a URL without touching the network.

    Strategies are tried in order until one yields a non-empty id:

    1. id-carrying query parameters (``goods.html?goods_id=123``)
    2. the SEO path pattern (``...-p-456.html``)
    3. a redirect-target parameter, decoded and resolved one level deep
    4. any run of at least ``min_digit_run`` digits
    """

    def __init__(
        self,
        *,
        id_params: Iterable[str] = ("goods_id",),
        path_pattern: str = r"-p-(\d+)\.html$",
        redirect_params: Iterable[str] = ("target_url",),
        min_digit_run: int = 6,
        view_url_template: str = "https://www.temu.com/goods.html?goods_id={id}",
    ) -> None:
        self.id_params = tuple(id_params)
        self.path_re = re.compile(path_pattern)
        self.redirect_params = tuple(redirect_params)
        self.digits_re = re.compile(r"(\d{%d,})" % min_digit_run)
        self.view_url_template = view_url_template

    @classmethod
    def from_profile(cls, site: SiteProfile) -> "IdentityResolver":
        return cls(
            id_params=site.id_params,
            path_pattern=site.path_pattern,
            redirect_params=site.redirect_params,
            min_digit_run=site.min_digit_run,
            view_url_template=site.view_url_template,
        )

    def resolve(self, url: str) -> str:
        """Return the product id for ``url`` or raise ``ProductIdNotFound``."""
        product_id = self._resolve(url or "", depth=0)
        if not product_id:
            raise ProductIdNotFound(url)
        return product_id

    def try_resolve(self, url: str) -> Optional[str]:
        return self._resolve(url or "", depth=0)

    def build_view_url(self, product_id: str) -> str:
        return self.view_url_template.format(id=quote(product_id, safe=""))

    def _resolve(self, url: str, depth: int) -> Optional[str]:
        try:
            parts = urlsplit(url.strip())
        except ValueError:
            LOGGER.debug("Unparsable URL %r", url)
            return None
        query = parse_qs(parts.query)

        for name in self.id_params:
            for value in query.get(name, []):
                if value.strip():
                    return value.strip()

        match = self.path_re.search(parts.path)
        if match:
            return match.group(1)

        if depth == 0:
            for name in self.redirect_params:
                for target in query.get(name, []):
                    nested = self._resolve(unquote(target), depth=1)
                    if nested:
                        LOGGER.debug("Resolved %s through %s redirect", nested, name)
                        return nested

        match = self.digits_re.search(url)
        if match:
            return match.group(1)
        return None
