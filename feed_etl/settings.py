"""Run configuration loaded from YAML and validated with pydantic."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import SettingsError

LOGGER = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parents[1]
DEFAULT_SETTINGS_PATH = BASE_DIR / "config" / "settings.yaml"

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class ScrapeSettings(_Frozen):
    headless: bool = True
    navigation_timeout_ms: int = 60_000
    settle_timeout_ms: int = 15_000
    redirect_wait_ms: int = 5_000
    dialog_timeout_ms: int = 2_000
    goods_wait_ms: int = 20_000
    concurrency: int = Field(default=6, ge=1)
    task_timeout_s: float = Field(default=120.0, gt=0)
    navigation_retries: int = Field(default=2, ge=1)
    history_cap_per_category: Optional[int] = Field(default=200, ge=0)
    max_items: int = 200
    max_pages_per_category: int = 1
    items_per_category_cap: int = 60
    max_new_items_per_run_per_category: int = 20
    enrich_details: bool = True
    enrich_limit_per_run: int = 30
    sleep_between_categories_ms: Tuple[int, int] = (500, 1500)
    sleep_between_batches_ms: Tuple[int, int] = (0, 0)

    @field_validator("sleep_between_categories_ms", "sleep_between_batches_ms")
    @classmethod
    def _ordered_range(cls, value: Tuple[int, int]) -> Tuple[int, int]:
        low, high = value
        if low < 0 or high < low:
            raise ValueError("delay range must be [low, high] with 0 <= low <= high")
        return value


class SiteProfile(_Frozen):
    """Everything that is specific to the source site."""

    id_params: Tuple[str, ...] = ("goods_id",)
    card_id_params: Tuple[str, ...] = ("goods_id", "sku_id", "item_id")
    path_pattern: str = r"-p-(\d+)\.html$"
    redirect_params: Tuple[str, ...] = ("target_url",)
    min_digit_run: int = 6
    view_url_template: str = "https://www.temu.com/goods.html?goods_id={id}"
    canonical_hosts: Tuple[str, ...] = ("temu.com", "temu.to")
    decoy_url_patterns: Tuple[str, ...] = (
        r"download-temu\.html",
        r"play\.google\.com",
        r"apps\.apple\.com",
        r"itunes\.apple\.com",
    )
    decoy_title_patterns: Tuple[str, ...] = (
        r"google\s*play",
        r"shop on temu for exclusive offers",
    )
    dialog_close_selectors: Tuple[str, ...] = (
        "[aria-label='Close' i]",
        "button:has-text('Continue in browser')",
        "div[role='dialog'] button[class*='close' i]",
    )
    goods_selector: str = (
        "div[data-goods-id], div[data-sku-id], a[href*='goods_id'], a[href*='detail'] img"
    )
    card_selectors: Tuple[str, ...] = (
        "div[data-goods-id]",
        "div[data-sku-id]",
        "a[href*='goods_id']",
        "a[href*='detail']:has(img)",
    )
    next_page_selector: str = (
        "a[aria-label*='Next' i], button[aria-label*='Next' i], a:has-text('Next')"
    )
    user_agent: str = DESKTOP_USER_AGENT
    locale: str = "en-US"
    viewport: Tuple[int, int] = (1366, 900)


class AffiliateOptions(_Frozen):
    """Affiliate options; ``None`` means "not set at this scope"."""

    append_params: Optional[Dict[str, str]] = Field(default=None, alias="appendParams")
    base_redirect: Optional[str] = Field(default=None, alias="baseRedirect")


class AffiliateSettings(AffiliateOptions):
    categories: Dict[str, AffiliateOptions] = Field(default_factory=dict)

    def for_category(self, name: Optional[str]) -> Optional[AffiliateOptions]:
        if not name:
            return None
        return self.categories.get(name)


class CategoryRule(_Frozen):
    name: str
    keywords: Tuple[str, ...] = ()


class ListingTarget(_Frozen):
    name: str
    url: str


class PathSettings(_Frozen):
    feed: Path = BASE_DIR / "data" / "products.json"
    errors: Path = BASE_DIR / "data" / "errors.json"
    links: Path = BASE_DIR / "data" / "manual_products.csv"

    @field_validator("feed", "errors", "links")
    @classmethod
    def _under_base_dir(cls, value: Path) -> Path:
        return value if value.is_absolute() else BASE_DIR / value


class Settings(_Frozen):
    scrape: ScrapeSettings = Field(default_factory=ScrapeSettings)
    site: SiteProfile = Field(default_factory=SiteProfile)
    affiliate: AffiliateSettings = Field(default_factory=AffiliateSettings)
    categories: Tuple[CategoryRule, ...] = ()
    listings: Tuple[ListingTarget, ...] = ()
    paths: PathSettings = Field(default_factory=PathSettings)

    @field_validator("categories", mode="before")
    @classmethod
    def _rules_in_file_order(cls, value: Any) -> Any:
        # A mapping is accepted too; its keys are taken in file order.
        if isinstance(value, dict):
            return [{"name": name, "keywords": kws or []} for name, kws in value.items()]
        return value


def load_settings(path: str | Path | None = None) -> Settings:
    """Read settings from YAML; a missing default file yields built-in defaults."""
    load_dotenv(BASE_DIR / ".env")
    explicit = path is not None or "FEED_SETTINGS" in os.environ
    settings_path = Path(path or os.getenv("FEED_SETTINGS") or DEFAULT_SETTINGS_PATH)

    if not settings_path.exists():
        if explicit:
            raise SettingsError(f"settings file not found: {settings_path}")
        LOGGER.info("No settings file at %s, using defaults", settings_path)
        return Settings()

    try:
        data = yaml.safe_load(settings_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise SettingsError(f"cannot parse {settings_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise SettingsError(f"{settings_path} must contain a mapping")

    try:
        settings = Settings.model_validate(data)
    except ValidationError as exc:
        raise SettingsError(f"invalid settings in {settings_path}:\n{exc}") from exc

    LOGGER.debug(
        "Loaded settings from %s (%d rules, %d listings)",
        settings_path,
        len(settings.categories),
        len(settings.listings),
    )
    return settings
