"""Progress statistics for the library."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from .models import AppState


def _percent(part: int, whole: int) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


class ProgressStats(BaseModel):
    """Aggregate counts shown in the stats view."""

    library_size: int
    watched_movies: int
    total_movies: int
    watched_episodes: int
    total_episodes_estimate: int
    overall_percent: float
    movie_percent: float
    episode_percent: float
    last_activity: Optional[datetime] = None


def compute_stats(state: AppState, episode_totals: Optional[dict[str, int]] = None) -> ProgressStats:
    """Summarize progress.

    ``episode_totals`` maps unit id to a known episode count (from metadata).
    Without it, the number of tracked episodes is used as the estimate.
    """
    episode_totals = episode_totals or {}
    watched_movies = total_movies = 0
    watched_episodes = total_episodes = 0

    for unit in state.library:
        if not unit.is_series_scoped:
            total_movies += 1
            progress = state.movie_progress.get(unit.id)
            if progress and progress.watched:
                watched_movies += 1
            continue

        episodes = state.episode_progress.get(unit.id)
        watched = episodes.watched_count() if episodes else 0
        tracked = len(episodes.episodes) if episodes else 0
        watched_episodes += watched
        total_episodes += max(episode_totals.get(unit.id, 0), tracked)

    activity = [unit.last_updated_at for unit in state.library]
    watched_total = watched_movies + watched_episodes
    trackable_total = total_movies + total_episodes

    return ProgressStats(
        library_size=len(state.library),
        watched_movies=watched_movies,
        total_movies=total_movies,
        watched_episodes=watched_episodes,
        total_episodes_estimate=total_episodes,
        overall_percent=_percent(watched_total, trackable_total),
        movie_percent=_percent(watched_movies, total_movies),
        episode_percent=_percent(watched_episodes, total_episodes),
        last_activity=max(activity) if activity else None,
    )
