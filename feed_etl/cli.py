"""CLI for building and refreshing the catalog feed."""
from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from .archive import load_previous_feed
from .errors import FeedError
from .identity import IdentityResolver
from .inputs import read_links
from .listing import run_listings
from .pipeline import RunSummary, run_manual
from .settings import Settings, load_settings

LOGGER = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


def _with_overrides(settings: Settings, **scrape_overrides) -> Settings:
    overrides = {k: v for k, v in scrape_overrides.items() if v is not None}
    if not overrides:
        return settings
    return settings.model_copy(update={"scrape": settings.scrape.model_copy(update=overrides)})


def _report(summary: RunSummary) -> None:
    click.echo(f"\n✅ Feed saved → {summary.feed_path} ({summary.total_items} items)")
    click.echo(f"   tasks: succeeded={summary.succeeded}, failed={summary.failed}")
    for name, count in summary.fresh_by_category.items():
        click.echo(f"   {name:20s}: {count:4d} fresh")
    if summary.errors_path:
        click.echo(f"⚠️  Failures written to {summary.errors_path}")


@click.group()
@click.option(
    "--settings",
    "settings_path",
    type=click.Path(dir_okay=False),
    envvar="FEED_SETTINGS",
    help="YAML settings file (defaults to config/settings.yaml)",
)
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, settings_path: Optional[str], verbose: bool) -> None:
    """Catalog feed builder."""
    _configure_logging(verbose)
    try:
        ctx.obj = load_settings(settings_path)
    except FeedError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command()
@click.option("--links", type=click.Path(dir_okay=False), help="CSV with product links")
@click.option("--out", type=click.Path(dir_okay=False), help="Feed JSON path")
@click.option("--errors", type=click.Path(dir_okay=False), help="Error report path")
@click.option("--max-items", type=int, help="Only process the first N links")
@click.option("--concurrency", type=int, help="Parallel pages per batch")
@click.option("--headless/--headed", default=None, help="Browser visibility")
@click.pass_obj
def manual(
    settings: Settings,
    links: Optional[str],
    out: Optional[str],
    errors: Optional[str],
    max_items: Optional[int],
    concurrency: Optional[int],
    headless: Optional[bool],
) -> None:
    """Scrape product pages listed in the links CSV and merge them into the feed."""
    settings = _with_overrides(settings, max_items=max_items, concurrency=concurrency, headless=headless)
    paths = settings.paths
    try:
        units = read_links(links or paths.links, settings.scrape.max_items)
        click.echo(f"🚀 Processing {len(units)} link(s)")
        summary = asyncio.run(
            run_manual(
                settings,
                units,
                feed_path=out or paths.feed,
                errors_path=errors or paths.errors,
            )
        )
    except FeedError as exc:
        raise click.ClickException(str(exc)) from exc
    except KeyboardInterrupt:
        click.echo("Interrupted, feed left unchanged", err=True)
        raise click.Abort()
    _report(summary)


@cli.command()
@click.option("--out", type=click.Path(dir_okay=False), help="Feed JSON path")
@click.option("--errors", type=click.Path(dir_okay=False), help="Error report path")
@click.option("--headless/--headed", default=None, help="Browser visibility")
@click.pass_obj
def listings(settings: Settings, out: Optional[str], errors: Optional[str], headless: Optional[bool]) -> None:
    """Scrape the configured category listing pages and merge them into the feed."""
    settings = _with_overrides(settings, headless=headless)
    try:
        summary = asyncio.run(
            run_listings(
                settings,
                feed_path=out or settings.paths.feed,
                errors_path=errors or settings.paths.errors,
            )
        )
    except FeedError as exc:
        raise click.ClickException(str(exc)) from exc
    except KeyboardInterrupt:
        click.echo("Interrupted, feed left unchanged", err=True)
        raise click.Abort()
    _report(summary)


@cli.command()
@click.argument("urls", nargs=-1, required=True)
@click.pass_obj
def resolve(settings: Settings, urls: Tuple[str, ...]) -> None:
    """Show the product id and view URL derived from each URL (no network)."""
    resolver = IdentityResolver.from_profile(settings.site)
    for url in urls:
        product_id = resolver.try_resolve(url)
        if product_id is None:
            click.echo(f"❌ {url}: not found")
        else:
            click.echo(f"{product_id}\t{resolver.build_view_url(product_id)}")


@cli.command()
@click.option("--feed", "feed_path", type=click.Path(dir_okay=False), help="Feed JSON path")
@click.pass_obj
def stats(settings: Settings, feed_path: Optional[str]) -> None:
    """Show per-category item counts of the persisted feed."""
    path = Path(feed_path or settings.paths.feed)
    feed = load_previous_feed(path)

    click.echo("\n📊 Feed Statistics\n" + "=" * 40)
    click.echo(f"Generated at: {feed.generated_at}")
    click.echo(f"Total items: {feed.item_count()}")
    for category in feed.categories:
        click.echo(f"  {category.name:20s}: {len(category.items):6d}")
    click.echo()


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
