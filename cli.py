# Simple CLI for the Kiwoom trading agent
import asyncio
import json

import click

from app.main import ApplicationOrchestrator, main as run_app


async def _one_shot(action):
    app = ApplicationOrchestrator()
    try:
        await app.startup()
        return await action(app.container)
    finally:
        await app.shutdown()


@click.group()
def cli():
    """Kiwoom LLM trading agent CLI"""
    pass


@cli.command()
def run():
    """Run the agent with its cron schedule"""
    click.echo("Starting Kiwoom agent...")
    asyncio.run(run_app())


@cli.command("market-cycle")
def market_cycle():
    """Run a single market cycle now"""
    async def action(container):
        return await container.agent_scheduler().run_market_cycle()

    report = asyncio.run(_one_shot(action))
    if report is None:
        click.echo("No quotes available, nothing executed.")
        return
    click.echo(json.dumps(report.model_dump(mode="json"), indent=2, ensure_ascii=False))


@cli.command("news-cycle")
def news_cycle():
    """Scrape news feeds and refine the strategy now"""
    async def action(container):
        return await container.agent_scheduler().run_news_cycle()

    articles = asyncio.run(_one_shot(action))
    click.echo(f"Scraped {len(articles)} articles.")


@cli.command("refresh-universe")
@click.option("--source", type=click.Choice(["kiwoom", "url"]), default="kiwoom",
              help="Rebuild the catalog from the Kiwoom stock list or from UNIVERSE__SOURCE_URL")
@click.option("--market", "markets", multiple=True, help="Kiwoom market type, repeatable (default 0 and 10)")
def refresh_universe(source, markets):
    """Rebuild the universe catalog"""
    async def action(container):
        universe = container.universe_service()
        if source == "url":
            return await universe.refresh_from_source()
        return await universe.refresh_from_kiwoom(list(markets) or None)

    count = asyncio.run(_one_shot(action))
    click.echo(f"Universe catalog refreshed with {count} entries.")


@cli.command("show-universe")
def show_universe():
    """Print the symbols the next market cycle would trade"""
    async def action(container):
        return await container.universe_resolver().resolve_universe_selection()

    selection = asyncio.run(_one_shot(action))
    click.echo(json.dumps(selection.model_dump(), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    cli()
