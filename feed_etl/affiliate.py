"""Outbound link rewriting for monetization."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from .settings import AffiliateOptions

LOGGER = logging.getLogger(__name__)

# Characters encodeURIComponent leaves alone.
_URI_COMPONENT_SAFE = "-_.!~*'()"


def effective_options(
    global_options: AffiliateOptions, category_options: Optional[AffiliateOptions] = None
) -> AffiliateOptions:
    """Per-category options replace the matching global option wholesale."""
    if category_options is None:
        return global_options
    append_params = category_options.append_params
    if append_params is None:
        append_params = global_options.append_params
    base_redirect = category_options.base_redirect
    if base_redirect is None:
        base_redirect = global_options.base_redirect
    return AffiliateOptions(append_params=append_params, base_redirect=base_redirect)


def set_query_params(url: str, params: Dict[str, str]) -> str:
    """Merge ``params`` into the URL's query, overwriting same-named entries."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"not an absolute URL: {url!r}")
    pairs: List[Tuple[str, str]] = parse_qsl(parts.query, keep_blank_values=True)
    for key, value in params.items():
        replaced = False
        kept: List[Tuple[str, str]] = []
        for existing_key, existing_value in pairs:
            if existing_key != key:
                kept.append((existing_key, existing_value))
            elif not replaced:
                kept.append((key, value))
                replaced = True
        if not replaced:
            kept.append((key, value))
        pairs = kept
    return urlunsplit(parts._replace(query=urlencode(pairs)))


def wrap_redirect(base: str, url: str) -> str:
    separator = "&" if "?" in base else "?"
    return f"{base}{separator}u={quote(url, safe=_URI_COMPONENT_SAFE)}"


def rewrite(
    url: str,
    global_options: AffiliateOptions,
    category_options: Optional[AffiliateOptions] = None,
) -> str:
    """Turn a canonical product URL into the outbound URL shown to users."""
    options = effective_options(global_options, category_options)
    out = url
    if options.append_params:
        try:
            out = set_query_params(out, options.append_params)
        except ValueError as exc:
            LOGGER.warning("Skipping parameter injection for %s: %s", url, exc)
    if options.base_redirect:
        return wrap_redirect(options.base_redirect, out)
    return out
