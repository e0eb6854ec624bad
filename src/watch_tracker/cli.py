"""Command-line interface for the watch tracker."""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
import requests

from .config import get_settings, validate_remote_config
from .constants import ExternalType, ThemeMode
from .errors import AuthError, ImportFormatError, UnknownUnitError
from .metadata import poster_url
from .models import AppState, TrackableUnit
from .reducer import (
    AddCustomUnit,
    AddExternalUnit,
    RemoveUnit,
    ReorderLibrary,
    ReplaceState,
    SetApiKey,
    SetTheme,
)
from .stats import compute_stats
from .storage import export_json, import_state
from .sync_service import TrackerService, execute_sync, print_sync_results

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def setup_logging(level: str):
    """Configure logging for the application."""
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


def _require_valid_config():
    """Validate remote store settings and exit if invalid."""
    is_valid, invalid = validate_remote_config(get_settings())
    if not is_valid:
        logger.error("=" * 60)
        logger.error("CONFIGURATION ERROR: Remote store is not configured")
        logger.error("=" * 60)
        for name in invalid:
            logger.error(f"  - {name}")
        logger.error("Edit data/config.yaml or set WATCH_TRACKER_REMOTE_URL / WATCH_TRACKER_ANON_KEY")
        sys.exit(1)


def _open_service() -> TrackerService:
    """Load state, restore the session and retry anything still queued."""
    service = TrackerService(get_settings())
    service.start()
    service.engine.flush_pending()
    return service


def _parse_episodes(ranges: str) -> list[int]:
    """Parse "1-5,7,9-10" into a sorted list of episode numbers."""
    numbers: set[int] = set()
    for part in ranges.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start, end = part.split("-", 1)
            numbers.update(range(int(start), int(end) + 1))
        else:
            numbers.add(int(part))
    return sorted(numbers)


def _season_episodes(service: TrackerService, unit: TrackableUnit, season: int, ranges: Optional[str]) -> list[int]:
    if ranges:
        return _parse_episodes(ranges)
    if unit.external_id and unit.external_type == ExternalType.SERIES:
        episodes = service.metadata.get_season_episodes(unit.external_id, season)
        if episodes:
            return episodes
    raise click.UsageError("Episode list unknown; pass --episodes (e.g. 1-10)")


def _report_write(ok: bool):
    if ok:
        click.echo("Saved.")
    else:
        click.echo("Saved locally. Sync pending, will retry when the remote store is reachable.", err=True)


def _progress_label(state: AppState, unit: TrackableUnit) -> str:
    if not unit.is_series_scoped:
        progress = state.movie_progress.get(unit.id)
        return "watched" if progress and progress.watched else "-"

    series = state.series_progress.get(unit.id)
    episodes = state.episode_progress.get(unit.id)
    label = f"{episodes.watched_count() if episodes else 0} eps"
    if series and series.watched:
        label += ", series watched"
    return label


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS),
    default=None,
    help="Logging level (default from config)",
)
def main(log_level: Optional[str]):
    """Watch progress tracker with offline-safe remote sync."""
    setup_logging(log_level or get_settings().log_level)


@main.command()
@click.option("--email", prompt=True, help="Account email")
@click.option("--password", prompt=True, hide_input=True, help="Account password")
def login(email: str, password: str):
    """Sign in and reconcile local progress with the remote store."""
    _require_valid_config()
    settings = get_settings()
    service = TrackerService(settings)
    if settings.probe_connectivity:
        service.connectivity.probe(settings.remote_url)

    try:
        user_id = service.auth.sign_in_with_password(email, password)
    except AuthError as e:
        click.echo(f"Sign-in failed: {e}", err=True)
        sys.exit(1)

    click.echo(f"Signed in as {email} ({user_id})")
    if service.engine.last_reconcile:
        print_sync_results(service.engine.last_reconcile, "Reconcile Results")


@main.command()
def logout():
    """Sign out. Local library and progress are kept."""
    service = TrackerService(get_settings())
    service.auth.sign_out()
    click.echo("Signed out.")


@main.command()
def sync():
    """Deliver pending writes, then pull remote progress."""
    _require_valid_config()
    service = TrackerService(get_settings())
    flush_result, reconcile_result = execute_sync(service)

    print_sync_results(flush_result, "Pending Writes")
    if reconcile_result:
        print_sync_results(reconcile_result, "Reconcile Results")
    elif service.store.state.pending_writes:
        click.echo(f"\n{len(service.store.state.pending_writes)} writes still pending; pull skipped.")

    ok = flush_result.success and (reconcile_result is None or reconcile_result.success)
    sys.exit(0 if ok else 1)


@main.command()
def status():
    """Show sign-in, connectivity and pending sync state."""
    service = _open_service()
    sync_status = service.engine.status
    click.echo(f"User: {sync_status.user_id or 'signed out'}")
    click.echo(f"Online: {sync_status.online}")
    click.echo(f"Pending writes: {len(service.store.state.pending_writes)}")
    for key in list(service.store.state.pending_writes)[:10]:
        click.echo(f"  - {key}")


@main.command(name="list")
@click.option("--details", is_flag=True, help="Resolve titles through the metadata service")
def list_library(details: bool):
    """List the library in chronological order."""
    service = TrackerService(get_settings())
    state = service.store.state
    for unit in state.library:
        title = service.metadata.get_summary(unit).title if details else unit.title
        click.echo(f"{unit.order_index:>3}. {title} [{unit.kind.value}] ({_progress_label(state, unit)})  id={unit.id}")


@main.command()
@click.argument("query")
def search(query: str):
    """Search the metadata service for movies and series."""
    service = TrackerService(get_settings())
    if not service.metadata.api_key:
        click.echo("No metadata API key set. Run: watch-tracker set-key KEY", err=True)
        sys.exit(1)
    for item in service.metadata.search(query):
        name = item.get("title") or item.get("name")
        kind = "series" if item.get("media_type") == "tv" else "movie"
        click.echo(f"{item.get('id'):>8}  {kind:<6}  {name}")


@main.command()
@click.option("--type", "external_type", type=click.Choice(["movie", "series"]), required=True)
@click.option("--id", "external_id", type=int, required=True, help="Metadata service id")
@click.option("--title", default=None, help="Title (looked up when omitted)")
def add(external_type: str, external_id: int, title: Optional[str]):
    """Add a movie or series from the metadata service."""
    service = TrackerService(get_settings())
    image_url = None
    if not title and service.metadata.api_key:
        try:
            if external_type == "movie":
                details = service.metadata.get_movie(external_id)
                title = details.get("title")
            else:
                details = service.metadata.get_tv(external_id)
                title = details.get("name")
            image_url = poster_url(details.get("poster_path"))
        except requests.RequestException as e:
            logger.warning(f"Title lookup failed, using placeholder: {e}")

    action = AddExternalUnit(
        external_type=ExternalType(external_type),
        external_id=external_id,
        title=title,
        image_url=image_url,
    )
    service.store.dispatch(action)
    click.echo(f"Added {service.store.get_unit(action.unit_id).title} (id={action.unit_id})")


@main.command(name="add-custom")
@click.argument("title")
@click.option("--type", "custom_type", type=click.Choice(["movie", "series"]), default="movie")
@click.option("--image-url", default=None)
def add_custom(title: str, custom_type: str, image_url: Optional[str]):
    """Add an entry that is not in the metadata service."""
    service = TrackerService(get_settings())
    action = AddCustomUnit(title=title, custom_type=ExternalType(custom_type), image_url=image_url)
    service.store.dispatch(action)
    click.echo(f"Added {title} (id={action.unit_id})")


@main.command()
@click.argument("unit_id")
def remove(unit_id: str):
    """Remove an entry and all of its progress."""
    service = TrackerService(get_settings())
    try:
        service.store.dispatch(RemoveUnit(unit_id=unit_id))
    except UnknownUnitError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    click.echo(f"Removed {unit_id}")


@main.command()
@click.argument("unit_ids", nargs=-1, required=True)
def reorder(unit_ids: tuple[str, ...]):
    """Put the given entries first, in this order."""
    service = TrackerService(get_settings())
    service.store.dispatch(ReorderLibrary(unit_ids=list(unit_ids)))
    click.echo("Library reordered.")


@main.command()
@click.argument("unit_id")
@click.option("--unwatch", is_flag=True, help="Mark as not watched")
def watch(unit_id: str, unwatch: bool):
    """Mark a movie (or a whole series) watched."""
    service = _open_service()
    try:
        unit = service.store.get_unit(unit_id)
        if unit.is_series_scoped:
            ok = service.engine.toggle_series(unit_id, not unwatch)
        else:
            ok = service.engine.toggle_movie(unit_id, not unwatch)
    except UnknownUnitError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    _report_write(ok)


@main.command()
@click.argument("unit_id")
@click.argument("season", type=int)
@click.argument("episode", type=int)
@click.option("--unwatch", is_flag=True, help="Mark as not watched")
def episode(unit_id: str, season: int, episode: int, unwatch: bool):
    """Mark one episode watched."""
    service = _open_service()
    try:
        ok = service.engine.toggle_episode(unit_id, season, episode, not unwatch)
    except UnknownUnitError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    _report_write(ok)


@main.command()
@click.argument("unit_id")
@click.argument("season", type=int)
@click.option("--episodes", "episode_ranges", default=None, help="Episode numbers, e.g. 1-10")
@click.option("--unwatch", is_flag=True, help="Mark as not watched")
def season(unit_id: str, season: int, episode_ranges: Optional[str], unwatch: bool):
    """Mark a whole season watched."""
    service = _open_service()
    try:
        unit = service.store.get_unit(unit_id)
        episodes = _season_episodes(service, unit, season, episode_ranges)
        ok = service.engine.mark_season(unit_id, season, episodes, not unwatch)
    except UnknownUnitError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    _report_write(ok)


@main.command()
@click.argument("unit_id")
@click.argument("season", type=int)
@click.argument("target", type=int)
@click.option("--episodes", "episode_ranges", default=None, help="Episode numbers, e.g. 1-10")
def until(unit_id: str, season: int, target: int, episode_ranges: Optional[str]):
    """Mark episodes up to TARGET watched and the rest of the season unwatched."""
    service = _open_service()
    try:
        unit = service.store.get_unit(unit_id)
        episodes = _season_episodes(service, unit, season, episode_ranges)
        ok = service.engine.mark_until(unit_id, season, target, episodes)
    except UnknownUnitError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    _report_write(ok)


@main.command()
@click.argument("unit_id")
def clear(unit_id: str):
    """Clear all episode progress of a series entry."""
    service = _open_service()
    try:
        ok = service.engine.clear_episodes(unit_id)
    except UnknownUnitError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    _report_write(ok)


@main.command()
@click.argument("unit_id")
@click.option("--type", "external_type", type=click.Choice(["movie", "series"]), required=True)
@click.option("--id", "external_id", type=int, required=True, help="Metadata service id")
def resolve(unit_id: str, external_type: str, external_id: int):
    """Link an entry to a metadata service id."""
    service = TrackerService(get_settings())
    try:
        service.engine.resolve_external_id(unit_id, ExternalType(external_type), external_id)
    except UnknownUnitError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    click.echo(f"Linked {unit_id} to {external_type} {external_id}")


@main.command()
@click.option("--details", is_flag=True, help="Use metadata episode counts for the estimate")
def stats(details: bool):
    """Show progress statistics."""
    service = TrackerService(get_settings())
    state = service.store.state
    totals = {}
    if details:
        for unit in state.library:
            summary = service.metadata.get_summary(unit)
            if unit.is_series_scoped and summary.total_episodes:
                totals[unit.id] = summary.total_episodes

    result = compute_stats(state, totals)
    click.echo(f"Overall progress: {round(result.overall_percent)}%")
    click.echo(f"Movies: {result.watched_movies}/{result.total_movies} ({round(result.movie_percent)}%)")
    click.echo(
        f"Series episodes: {result.watched_episodes}/{result.total_episodes_estimate} "
        f"({round(result.episode_percent)}%)"
    )
    last = result.last_activity.strftime("%Y-%m-%d %H:%M") if result.last_activity else "Never"
    click.echo(f"Library items: {result.library_size} (last activity: {last})")


@main.command(name="export")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--include-key", is_flag=True, help="Include the metadata API key")
def export_command(path: Path, include_key: bool):
    """Export library and progress to a JSON file."""
    service = TrackerService(get_settings())
    path.write_text(export_json(service.store.state, include_key), encoding="utf-8")
    click.echo(f"Exported to {path}")


@main.command(name="import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def import_command(path: Path):
    """Replace library and progress with an export file."""
    service = TrackerService(get_settings())
    try:
        state = import_state(path.read_text(encoding="utf-8"))
    except ImportFormatError as e:
        click.echo(f"Import failed: {e}", err=True)
        sys.exit(1)
    service.store.dispatch(ReplaceState(state=state))
    click.echo(f"Imported {len(state.library)} library items.")


@main.command()
@click.confirmation_option(prompt="Delete local library and progress and restore the seed list?")
def reset():
    """Restore the seed library and drop all local progress."""
    service = TrackerService(get_settings())
    service.store.dispatch(ReplaceState(state=service.storage.reset()))
    click.echo("State reset to seed.")


@main.command(name="set-key")
@click.argument("api_key")
def set_key(api_key: str):
    """Store the metadata service API key."""
    service = TrackerService(get_settings())
    service.store.dispatch(SetApiKey(api_key=api_key))
    click.echo("API key saved.")


@main.command()
@click.argument("mode", type=click.Choice([mode.value for mode in ThemeMode]))
def theme(mode: str):
    """Set the display theme."""
    service = TrackerService(get_settings())
    service.store.dispatch(SetTheme(theme=ThemeMode(mode)))
    click.echo(f"Theme set to {mode}.")


if __name__ == "__main__":
    main()
