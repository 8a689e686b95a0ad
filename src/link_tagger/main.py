"""CLI entry point."""

import asyncio
import logging

import click

from .config import Config
from .errors import LinkTaggerError
from .fetching.cache import CachedMetadataSource, MetadataCache, UrlCache
from .fetching.fetcher import MetadataFetcher
from .links import LinkService
from .policy.plans import remaining_tag_slots
from .policy.usage import AIUsageTracker
from .processing.pipeline import LinkProcessor, ProcessingOutcome
from .storage.database import Database
from .storage.models import LinkStatus, TagProvenance
from .tagging.llm_tagger import LLMTagger
from .tagging.vocabulary import TagVocabulary

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def build_processor(cfg: Config, db: Database) -> LinkProcessor:
    """Wire a LinkProcessor from configuration."""
    fetcher = MetadataFetcher(
        requests_per_second=cfg.rate_limit_per_second,
        timeout_seconds=cfg.metadata_timeout_seconds,
    )
    cache = MetadataCache(
        ttl_seconds=cfg.cache_ttl_seconds, max_entries=cfg.cache_max_entries
    )
    tagger = LLMTagger(
        model_id=cfg.bedrock_model,
        region=cfg.bedrock_region,
        max_tags=cfg.max_suggested_tags,
        input_cost_per_1k_tokens=cfg.input_cost_per_1k_tokens,
        output_cost_per_1k_tokens=cfg.output_cost_per_1k_tokens,
        cache=UrlCache(
            ttl_seconds=cfg.suggestion_cache_ttl_seconds,
            max_entries=cfg.suggestion_cache_max_entries,
        ),
    )
    return LinkProcessor(
        db=db,
        vocabulary=TagVocabulary(db, cfg.user_id, cfg.limits()),
        metadata_source=CachedMetadataSource(fetcher, cache),
        suggester=tagger,
        metadata_timeout=cfg.metadata_timeout_seconds,
        ai_timeout=cfg.ai_timeout_seconds,
        retry_attempts=cfg.retry_attempts,
        retry_delay=cfg.retry_delay_seconds,
        retry_backoff=cfg.retry_backoff,
        mark_errors=cfg.mark_errors,
        usage=AIUsageTracker(db, cfg.user_id, cfg.limits()),
    )


def _echo_outcome(outcome: ProcessingOutcome) -> None:
    status = outcome.status.value if outcome.status else "deleted"
    click.echo(
        f"  [{status}] {outcome.link_id}: {len(outcome.tag_ids)} tags"
        f" ({len(outcome.created_tag_ids)} new, {outcome.skipped_count} skipped)"
    )
    if outcome.notice:
        click.echo(f"    {outcome.notice}")


@click.group()
@click.option("--config", "-c", default="config.yaml", help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config: str, verbose: bool) -> None:
    """Link Tagger - Save links and tag them with AI."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    ctx.obj = Config.from_yaml(config)


@cli.command()
@click.argument("url")
@click.option("--title", help="Link title")
@click.option("--description", help="Link description")
@click.option("--tag", "tag_names", multiple=True, help="Tag name to apply (repeatable)")
@click.option("--no-process", is_flag=True, help="Save without running AI tagging")
@click.pass_obj
def add(
    cfg: Config,
    url: str,
    title: str | None,
    description: str | None,
    tag_names: tuple[str, ...],
    no_process: bool,
) -> None:
    """Save a URL and tag it."""
    db = Database(cfg.database_path)
    vocabulary = TagVocabulary(db, cfg.user_id, cfg.limits())
    service = LinkService(db, cfg.user_id, cfg.limits())

    async def run() -> ProcessingOutcome | None:
        names = [name for name in tag_names if name.strip()]
        vocabulary.check_room(names)

        auto_tag = cfg.auto_tag and not no_process
        link = service.add_link(url, title=title, description=description)
        click.echo(f"Saved {link.id}")

        if names:
            tag_ids = []
            for name in names:
                tag = await vocabulary.create_tag(name, TagProvenance.MANUAL)
                tag_ids.append(tag.id)
            service.set_tags(
                link.id, tag_ids, None if auto_tag else LinkStatus.COMPLETED
            )
        if not auto_tag:
            return None
        return await build_processor(cfg, db).process(link.id)

    try:
        outcome = asyncio.run(run())
    except (LinkTaggerError, ValueError) as e:
        raise click.ClickException(str(e)) from e
    if outcome:
        _echo_outcome(outcome)


@cli.command()
@click.argument("link_ids", nargs=-1)
@click.option("--pending", is_flag=True, help="Process all pending links")
@click.option("--limit", "-n", default=None, type=int, help="Max pending links")
@click.pass_obj
def process(cfg: Config, link_ids: tuple[str, ...], pending: bool, limit: int | None) -> None:
    """Run AI tagging for links."""
    if not link_ids and not pending:
        raise click.UsageError("Give link ids or --pending")

    db = Database(cfg.database_path)
    processor = build_processor(cfg, db)

    async def run() -> list[ProcessingOutcome]:
        outcomes = await processor.process_many(link_ids)
        if pending:
            outcomes += await processor.process_pending(limit=limit or cfg.batch_size)
        return outcomes

    outcomes = asyncio.run(run())
    click.echo(f"Processed {len(outcomes)} links:")
    for outcome in outcomes:
        _echo_outcome(outcome)


@cli.command("links")
@click.option(
    "--status",
    type=click.Choice([s.value for s in LinkStatus]),
    default=None,
    help="Only links with this status",
)
@click.option("--limit", "-n", default=20, help="Max results")
@click.pass_obj
def list_links(cfg: Config, status: str | None, limit: int) -> None:
    """List saved links."""
    db = Database(cfg.database_path)
    links = db.list_links(
        cfg.user_id, status=LinkStatus(status) if status else None, limit=limit
    )
    if not links:
        click.echo("No links found.")
        return

    names = {tag.id: tag.name for tag in db.get_tags(cfg.user_id)}
    for link in links:
        click.echo(f"[{link.status.value}] {link.id} {link.title or link.url}")
        click.echo(f"  {link.url}")
        if link.tag_ids:
            labels = [names.get(tag_id, "(unknown tag)") for tag_id in link.tag_ids]
            click.echo(f"  Tags: {', '.join(labels)}")
        if link.error:
            click.echo(f"  Error: {link.error.code} - {link.error.message}")


@cli.command()
@click.pass_obj
def tags(cfg: Config) -> None:
    """List all tags."""
    db = Database(cfg.database_path)
    all_tags = db.get_tags(cfg.user_id)
    if not all_tags:
        click.echo("No tags found.")
        return

    click.echo("Tags:\n")
    for tag in all_tags:
        click.echo(f"  {tag.name} ({tag.provenance.value}) {tag.id}")


@cli.command("add-tag")
@click.argument("name")
@click.pass_obj
def add_tag(cfg: Config, name: str) -> None:
    """Create a tag by hand."""
    vocabulary = TagVocabulary(Database(cfg.database_path), cfg.user_id, cfg.limits())
    try:
        tag = asyncio.run(vocabulary.create_tag(name, TagProvenance.MANUAL))
    except LinkTaggerError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Tag {tag.name!r}: {tag.id}")


@cli.command("delete-tag")
@click.argument("tag_id")
@click.pass_obj
def delete_tag(cfg: Config, tag_id: str) -> None:
    """Delete a tag. Links keep a reference to it."""
    vocabulary = TagVocabulary(Database(cfg.database_path), cfg.user_id, cfg.limits())
    if not vocabulary.delete_tag(tag_id):
        raise click.ClickException(f"No tag {tag_id}")
    click.echo(f"Deleted tag {tag_id}")


@cli.command("delete-link")
@click.argument("link_id")
@click.pass_obj
def delete_link(cfg: Config, link_id: str) -> None:
    """Delete a saved link."""
    service = LinkService(Database(cfg.database_path), cfg.user_id, cfg.limits())
    if not service.delete_link(link_id):
        raise click.ClickException(f"No link {link_id}")
    click.echo(f"Deleted link {link_id}")


@cli.command()
@click.pass_obj
def limits(cfg: Config) -> None:
    """Show plan limits and current usage."""
    db = Database(cfg.database_path)
    plan_limits = cfg.limits()

    def show(limit: int | None) -> str:
        return "unlimited" if limit is None else str(limit)

    tag_count = db.count_tags(cfg.user_id)
    slots = remaining_tag_slots(plan_limits, tag_count)
    click.echo(f"Plan: {cfg.plan.value}")
    click.echo(f"  Links:         {db.count_links(cfg.user_id)} / {show(plan_limits.max_links)}")
    click.echo(f"  Tags:          {tag_count} / {show(plan_limits.max_tags)}")
    click.echo(f"  Links per day: {show(plan_limits.max_links_per_day)}")
    click.echo(f"  Tag slots left: {show(slots)}")

    usage = AIUsageTracker(db, cfg.user_id, plan_limits).summary()
    click.echo(f"  AI this month: {usage['month']['requests']} / {show(usage['monthly_limit'])}")
    click.echo(f"  AI today:      {usage['today']['requests']} / {show(usage['daily_limit'])}")
    click.echo(f"  Tags per AI request: {show(plan_limits.max_tags_per_request)}")


@cli.command()
@click.pass_obj
def stats(cfg: Config) -> None:
    """Show database statistics."""
    db = Database(cfg.database_path)
    s = db.get_stats(cfg.user_id)

    click.echo("Database Statistics:")
    click.echo(f"  Total links:  {s['total_links']}")
    for status in LinkStatus:
        click.echo(f"  {status.value + ':':<13} {s[status.value]}")
    click.echo(f"  Tags:         {s['tags']}")
    click.echo(f"  AI requests:  {s['ai_requests']} ({s['ai_tokens']} tokens, ${s['ai_cost']:.4f})")


if __name__ == "__main__":
    cli()
