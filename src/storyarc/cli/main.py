"""
Command Line Interface for StoryArc.

Commands:
    chapters   Split an events file into life chapters.
    mood       Build a mood timeline from an events file.
    generate   Run the full biography pipeline for one user.
    config     Inspect configuration and manage the API key.
    version    Show version and AI status.
"""

import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from storyarc import __version__
from storyarc.config import (
    AIMode,
    APIKeyManager,
    AppConfig,
    ConfigError,
    ConfigFileError,
    load_config,
)
from storyarc.core.models import AggregationPeriod, BiographyChapter, MoodTimeline
from storyarc.core.timeline import Timeline
from storyarc.narrative import NarrativeStyle
from storyarc.pipeline import BiographyOptions, BiographyPipeline, BiographyRequest, PipelineError
from storyarc.sources import JsonTimelineSource, KeywordCategorizer, SourceError, load_timeline_data
from storyarc.story.chapters import ChapterAssembler, ChapterOptions
from storyarc.story.sentiment import SentimentAnalyzer
from storyarc.utils.logging import setup_logging

logger = logging.getLogger(__name__)

console = Console()


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def print_header(text: str) -> None:
    """Print styled header."""
    console.print(f"\n[bold cyan]{text}[/bold cyan]\n")


def print_success(text: str) -> None:
    console.print(f"[bold green]✓[/bold green] {text}")


def print_warning(text: str) -> None:
    console.print(f"[bold yellow]⚠[/bold yellow] {text}")


def print_error(text: str) -> None:
    console.print(f"[bold red]✗[/bold red] {text}")


def print_info_panel(title: str, content: str, border_style: str = "blue") -> None:
    console.print(Panel(content, title=title, border_style=border_style))


def create_progress() -> Progress:
    """Create standard progress bar setup."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    )


def read_timeline(path: str) -> Timeline:
    """Load and categorize an events file, exiting on failure."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        timeline = load_timeline_data(data, origin=path)
    except (OSError, json.JSONDecodeError, SourceError) as e:
        print_error(f"Could not read events: {e}")
        sys.exit(1)
    return KeywordCategorizer().enrich(timeline)


def print_chapter_table(chapters: List[BiographyChapter]) -> None:
    table = Table(title="Chapters")
    table.add_column("#", justify="right")
    table.add_column("Title", style="cyan")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Events", justify="right")
    table.add_column("Category", style="green")

    for i, chapter in enumerate(chapters, 1):
        table.add_row(
            str(i),
            chapter.title,
            chapter.start_date.date().isoformat(),
            chapter.end_date.date().isoformat(),
            str(chapter.metadata.event_count),
            chapter.dominant_category.value,
        )

    console.print(table)


def print_mood_summary(mood: MoodTimeline) -> None:
    table = Table(title="Mood Timeline")
    table.add_column("Date")
    table.add_column("Valence", justify="right")
    table.add_column("Arousal", justify="right")
    table.add_column("Emotion", style="magenta")
    table.add_column("Events", justify="right")

    for point in mood.data_points:
        table.add_row(
            point.date.date().isoformat(),
            f"{point.valence:+.2f}",
            f"{point.arousal:.2f}",
            point.primary_emotion.value,
            str(point.event_count),
        )
    console.print(table)

    averages = mood.averages
    console.print(
        f"Averages: valence {averages.valence:+.2f}, "
        f"arousal {averages.arousal:.2f}, dominance {averages.dominance:.2f}"
    )
    for milestone in mood.milestones:
        console.print(
            f"  {milestone.type.value.upper()} {milestone.date.date().isoformat()}: {milestone.reason}",
            markup=False,
        )


# =============================================================================
# MAIN GROUP
# =============================================================================

@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.option('--config', 'config_path', type=click.Path(), help='Custom config file')
@click.pass_context
def cli(ctx, verbose, debug, config_path):
    """
    StoryArc - Turn a personal timeline into life chapters and a mood timeline.
    """
    try:
        app_config = load_config(Path(config_path) if config_path else None)
    except ConfigFileError as e:
        print_error(str(e))
        sys.exit(1)

    if debug or app_config.debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    else:
        level = app_config.logging.level if app_config.logging.level != "INFO" else "WARNING"
    setup_logging(level=level, log_file=app_config.logging.log_file)

    ctx.ensure_object(dict)
    ctx.obj['config'] = app_config
    ctx.obj['verbose'] = verbose


def _config_for(ctx, no_ai: bool) -> AppConfig:
    app_config: AppConfig = ctx.obj['config']
    if no_ai:
        ai = app_config.ai.model_copy(update={"mode": AIMode.DISABLED})
        app_config = app_config.model_copy(update={"ai": ai})
    return app_config


# =============================================================================
# CHAPTERS COMMAND
# =============================================================================

@cli.command()
@click.argument('events_json', type=click.Path(exists=True, dir_okay=False))
@click.option('--no-ai', is_flag=True, help='Use deterministic titles only')
@click.option('--min-events', type=click.IntRange(min=1), help='Minimum events per chapter')
@click.option('--json', 'output_json', is_flag=True, help='Output as JSON')
@click.pass_context
def chapters(ctx, events_json, no_ai, min_events, output_json):
    """Split EVENTS_JSON into life chapters."""
    app_config = _config_for(ctx, no_ai)
    options = ChapterOptions.from_config(app_config.chapters)
    updates = {"use_ai": options.use_ai and not no_ai}
    if min_events is not None:
        updates["min_events_per_chapter"] = min_events
    options = options.model_copy(update=updates)

    timeline = read_timeline(events_json)
    result = ChapterAssembler(config=app_config).generate_chapters(timeline, options)

    if output_json:
        click.echo(json.dumps([c.model_dump(mode="json") for c in result], indent=2))
        return

    print_header(f"{len(timeline)} events → {len(result)} chapters")
    if not result:
        print_warning("No chapter reached the minimum size")
        return
    print_chapter_table(result)


# =============================================================================
# MOOD COMMAND
# =============================================================================

@cli.command()
@click.argument('events_json', type=click.Path(exists=True, dir_okay=False))
@click.option('--period', type=click.Choice([p.value for p in AggregationPeriod]),
              help='Aggregation period (default from config)')
@click.option('--no-ai', is_flag=True, help='Skip the model; every event gets a neutral score')
@click.option('--json', 'output_json', is_flag=True, help='Output as JSON')
@click.pass_context
def mood(ctx, events_json, period, no_ai, output_json):
    """Build a mood timeline from EVENTS_JSON."""
    app_config = _config_for(ctx, no_ai)
    timeline = read_timeline(events_json)

    analyzer = SentimentAnalyzer(config=app_config, use_ai=not no_ai)
    result = analyzer.generate_mood_timeline(timeline.events, period, user_id=timeline.user_id)

    if output_json:
        click.echo(result.model_dump_json(indent=2))
        return

    print_header(f"Mood timeline for {len(timeline)} events")
    print_mood_summary(result)


# =============================================================================
# GENERATE COMMAND - Main workflow
# =============================================================================

@cli.command()
@click.argument('user_id')
@click.option('--source', '-s', 'source_dir', type=click.Path(exists=True, file_okay=False),
              required=True, help='Directory of <user_id>.json event files')
@click.option('--style', type=click.Choice([s.value for s in NarrativeStyle]),
              default=NarrativeStyle.CHRONOLOGICAL.value, help='Narrative style')
@click.option('--period', type=click.Choice([p.value for p in AggregationPeriod]),
              help='Mood aggregation period')
@click.option('--no-sentiment', is_flag=True, help='Skip the mood timeline')
@click.option('--no-ai', is_flag=True, help='Force deterministic mode')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write the result as JSON')
@click.pass_context
def generate(ctx, user_id, source_dir, style, period, no_sentiment, no_ai, output):
    """Run the biography pipeline for USER_ID."""
    app_config = _config_for(ctx, no_ai)
    chapter_options = ChapterOptions.from_config(app_config.chapters)
    chapter_options = chapter_options.model_copy(update={"use_ai": chapter_options.use_ai and not no_ai})

    request = BiographyRequest(
        user_id=user_id,
        style=NarrativeStyle(style),
        options=BiographyOptions(
            include_sentiment=app_config.pipeline.include_sentiment and not no_sentiment,
            chapter_options=chapter_options,
            mood_period=AggregationPeriod(period or app_config.sentiment.default_period),
            use_ai=not no_ai,
        ),
    )
    pipeline = BiographyPipeline(JsonTimelineSource(source_dir), config=app_config)

    print_header(f"Generating biography for {user_id}")
    try:
        with create_progress() as progress:
            task = progress.add_task("Working...", total=100)
            result = pipeline.run(request, progress=lambda pct: progress.update(task, completed=pct))
    except PipelineError as e:
        print_error(f"Generation failed during {e.stage.value}: {e.original_error}")
        sys.exit(1)

    print_chapter_table(result.chapters)
    if result.mood_timeline is not None:
        print_mood_summary(result.mood_timeline)

    print_info_panel(
        "Summary",
        f"Biography: {result.biography_id}\n"
        f"Chapters: {result.total_chapters}\n"
        f"Words: {result.total_words}\n"
        f"Estimated cost: ${result.cost:.4f}\n"
        f"Time: {result.generation_time} ms",
        border_style="green",
    )

    if output:
        Path(output).write_text(result.model_dump_json(indent=2), encoding="utf-8")
        print_success(f"Result written to {output}")


# =============================================================================
# CONFIG COMMANDS
# =============================================================================

@cli.group()
def config():
    """Manage configuration settings."""


@config.command()
@click.pass_context
def show(ctx):
    """Display current configuration."""
    app_config: AppConfig = ctx.obj['config']
    print_header("Current Configuration")

    table = Table(title="Settings")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("AI mode", app_config.ai.mode.value)
    table.add_row("Model", app_config.ai.model_name)
    table.add_row("API Key", "[CONFIGURED]" if APIKeyManager().get_key() else "[NOT SET]")
    table.add_row("Min events per chapter", str(app_config.chapters.min_events_per_chapter))
    table.add_row("Chapter window (days)",
                  f"{app_config.chapters.min_chapter_duration_days}-{app_config.chapters.max_chapter_duration_days}")
    table.add_row("Sentiment batch size", str(app_config.sentiment.batch_size))
    table.add_row("Mood period", app_config.sentiment.default_period)
    table.add_row("Log level", app_config.logging.level)

    console.print(table)


@config.command('set-key')
def set_key():
    """Store the Gemini API key in the system keyring."""
    print_header("Set Gemini API Key")
    api_key = click.prompt("Enter your Gemini API key", hide_input=True)

    try:
        APIKeyManager().store_key(api_key)
    except ConfigError as e:
        print_error(str(e))
        sys.exit(1)
    print_success("API key stored in system keyring")


# =============================================================================
# VERSION COMMAND
# =============================================================================

@cli.command()
@click.pass_context
def version(ctx):
    """Show version and AI status."""
    app_config: AppConfig = ctx.obj['config']
    print_header("StoryArc")
    console.print(f"Version: [bold]{__version__}[/bold]")
    console.print(f"Python: {sys.version.split()[0]}")

    if app_config.is_ai_available():
        console.print(f"AI: [green]available[/green] ({app_config.ai.model_name})")
    else:
        console.print("AI: [yellow]unavailable[/yellow] (configure with: storyarc config set-key)")


def main(argv: Optional[List[str]] = None) -> None:
    cli(args=argv)


if __name__ == '__main__':
    main()
