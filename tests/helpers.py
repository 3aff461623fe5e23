"""Shared builders for tests."""

from smartqueue.models import AudioFeatures, Track

# 2024-01-01 12:00:00 UTC, a Monday
BASE_TIME = 1704110400.0
DAY = 86_400.0

GENRES = ["rock", "jazz", "electronic", "hip hop", "folk"]

# No two are near-duplicates under title dedupe
TITLE_WORDS = (
    "Amber", "Birch", "Cedar", "Delta", "Ember", "Fjord", "Grove", "Haven",
    "Islet", "Jasper", "Kestrel", "Lagoon", "Meadow", "Nectar", "Orchid", "Pebble",
    "Quartz", "Raven", "Summit", "Thistle", "Umbra", "Velvet", "Willow", "Xenon",
    "Yonder", "Zephyr", "Aurora", "Blossom", "Canyon", "Dune", "Echo", "Frost",
    "Glacier", "Harbor", "Ivory", "Juniper", "Kelp", "Lantern", "Mosaic", "Nimbus",
)


def make_track(
    track_id: str,
    *,
    artist: str = "Artist",
    genres=("rock",),
    title: str = "",
    album=None,
    energy=None,
    bpm=None,
    key=None,
    valence=None,
    moods=(),
) -> Track:
    features = None
    if any(v is not None for v in (energy, bpm, key, valence)):
        features = AudioFeatures(energy=energy, valence=valence, bpm=bpm, key=key)
    return Track(
        id=track_id,
        title=title,
        artists=[artist],
        genres=list(genres),
        moods=list(moods),
        album=album,
        audio_features=features,
    )


def build_library(n: int = 30):
    """Synthetic library: 10 artists, 5 genres, distinct titles, deterministic audio features."""
    return [
        make_track(
            f"t{i}",
            artist=f"Artist {i % 10}",
            genres=(GENRES[i % len(GENRES)],),
            title=TITLE_WORDS[i % len(TITLE_WORDS)],
            album=f"Album {i % 6}",
            energy=round((i % 10) / 10.0, 2),
            valence=round(((i * 3) % 10) / 10.0, 2),
            bpm=90.0 + (i % 8) * 5,
            key=i % 12,
        )
        for i in range(n)
    ]


class FakeClock:
    """Settable clock usable for both wall time and monotonic time."""

    def __init__(self, start: float = BASE_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now
