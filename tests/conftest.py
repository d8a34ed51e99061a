"""Shared fixtures."""

import pytest

from partygame.config import Environment, Settings
from partygame.lib.models import QuizOption, RawItem, RoundItem
from partygame.lib.persistence import ProgressStore
from partygame.lib.scores import Scoreboard


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with timings short enough for tests."""
    return Settings(
        environment=Environment.TEST,
        progress_dir=tmp_path / "progress",
        spotify_access_token="test-token",
        enable_preview_lookup=False,
        resolver_timeout_seconds=0.2,
        resolver_retry_backoff_seconds=0.0,
        ready_timeout_seconds=0.05,
        reload_delay_seconds=0.0,
        tick_interval_seconds=0.01,
        default_round_seconds=30.0,
    )


@pytest.fixture
def scoreboard() -> Scoreboard:
    return Scoreboard()


@pytest.fixture
def progress_store(settings) -> ProgressStore:
    return ProgressStore(settings)


def make_raw(n: int, playable: bool = True) -> RawItem:
    return RawItem(
        id=f"track-{n}",
        name=f"Song {n}",
        artist=f"Artist {n}",
        preview_url=f"https://previews.test/{n}.mp3" if playable else None,
    )


def make_question(n: int, points: int | None = None) -> RoundItem:
    return RoundItem(
        id=f"q{n}",
        prompt=f"Question {n}?",
        options=[
            QuizOption(text=f"Right {n}", is_correct=True),
            QuizOption(text=f"Wrong {n}"),
        ],
        points=points,
    )
