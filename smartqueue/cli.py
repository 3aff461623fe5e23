"""
SmartQueue CLI - Rank the next tracks for a library and listening history

Usage:
    python -m smartqueue.cli --library library.json --events events.json --current t42
    python -m smartqueue.cli --library library.json --radio-artist "Radiohead" --count 15
    python -m smartqueue.cli --library library.json --playlist-seed t1 t2 --count 20

The library file is a JSON list of tracks (or {"tracks": [...]}); the event
file is a JSON list of events, applied in order.
"""
import argparse
import json
import sys
from typing import Any, List, Optional

from .config_loader import Config
from .embeddings.playlist_generator import PlaylistOptions
from .engine import DEFAULT_USER, RecommendationEngine
from .logging_utils import add_logging_args, configure_logging, resolve_log_level
from .models import RadioSeed, Track, UserEvent
from .recommendation_client import CatalogRecommendationSource


def _load_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_library(path: str) -> List[Track]:
    data = _load_json(path)
    if isinstance(data, dict):
        data = data.get("tracks", [])
    return [Track.from_dict(item) for item in data]


def load_events(path: str) -> List[UserEvent]:
    data = _load_json(path)
    if isinstance(data, dict):
        data = data.get("events", [])
    return [UserEvent.from_dict(item) for item in data]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Rank the next tracks to play from a music library and listening history"
    )
    parser.add_argument("--config", type=str, help="YAML configuration file")
    parser.add_argument("--library", type=str, required=True, help="JSON file with the track library")
    parser.add_argument("--events", type=str, help="JSON file with user events to learn from")
    parser.add_argument("--user", type=str, default=DEFAULT_USER, help="User id (default: default)")
    parser.add_argument("--current", type=str, help="Id of the track playing now")
    parser.add_argument("--count", type=int, default=10, help="Number of tracks to return (default: 10)")
    parser.add_argument("--now", type=float, help="Override the current time (epoch seconds)")
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Answer recommendation queries from the library instead of the configured API",
    )

    radio = parser.add_mutually_exclusive_group()
    radio.add_argument("--radio-track", type=str, metavar="ID", help="Start radio from a track id")
    radio.add_argument("--radio-artist", type=str, metavar="NAME", help="Start radio from an artist")
    radio.add_argument("--radio-genre", type=str, metavar="GENRE", help="Start radio from a genre")

    playlist = parser.add_mutually_exclusive_group()
    playlist.add_argument("--playlist-seed", nargs="+", metavar="ID", help="Generate a playlist from seed track ids")
    playlist.add_argument("--taste-playlist", action="store_true", help="Generate a playlist from the taste profile")

    parser.add_argument("--save", action="store_true", help="Persist engine state to the configured storage")
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    add_logging_args(parser)
    return parser


def _radio_seed(args) -> Optional[RadioSeed]:
    if args.radio_track:
        return RadioSeed("track", args.radio_track)
    if args.radio_artist:
        return RadioSeed("artist", args.radio_artist, name=args.radio_artist)
    if args.radio_genre:
        return RadioSeed("genre", args.radio_genre, name=args.radio_genre, genres=[args.radio_genre])
    return None


def _print_playlist(playlist, engine: RecommendationEngine, as_json: bool) -> None:
    if as_json:
        print(json.dumps(playlist.to_dict(), indent=2))
        return
    print(f"\n{playlist.method.title()} playlist ({len(playlist.tracks)} tracks)\n")
    if playlist.message:
        print(f"  {playlist.message}")
    for i, item in enumerate(playlist.tracks, 1):
        track = engine.get_track(item.track_id)
        label = f"{track.primary_artist} - {track.title}" if track else item.track_id
        print(f"  {i:2d}. {label}  [{item.score:.3f}] {item.reason}")


def _print_result(result, as_json: bool) -> None:
    if as_json:
        print(json.dumps({
            "error": result.error,
            "exploration_mode": result.exploration_mode,
            "tracks": [
                {**scored.to_dict(), "source": queued.source.to_dict()}
                for scored, queued in zip(result.scored, result.tracks)
            ],
        }, indent=2))
        return
    if result.error:
        print(f"\n{result.error}\n")
        return
    print(f"\nNext {len(result.tracks)} tracks (exploration: {result.exploration_mode})\n")
    for i, (scored, queued) in enumerate(zip(result.scored, result.tracks), 1):
        track = scored.track
        print(f"  {i:2d}. {track.primary_artist} - {track.title}  [{scored.score:.1f}]  {queued.source.label}")
        if scored.explanation:
            print(f"      {'; '.join(scored.explanation[:3])}")


def run(args) -> int:
    config = Config(args.config)
    configure_logging(level=resolve_log_level(args), log_file=args.log_file or config.log_file)

    library = load_library(args.library)
    kwargs = {}
    if args.offline or not config.api_base_url:
        kwargs["recommendations"] = CatalogRecommendationSource(library)
    engine = RecommendationEngine.from_config(config, **kwargs)
    try:
        engine.load()
        engine.register_tracks(library)
        if args.events:
            for event in load_events(args.events):
                engine.record_event(event, user_id=args.user)

        now = args.now if args.now is not None else engine.clock()
        if args.playlist_seed or args.taste_playlist:
            options = PlaylistOptions(
                method="seed" if args.playlist_seed else "taste",
                seed_track_ids=tuple(args.playlist_seed or ()),
                limit=args.count,
            )
            _print_playlist(engine.generate_playlist(options, user_id=args.user, now=now), engine, args.json)
        else:
            seed = _radio_seed(args)
            if seed is not None:
                engine.start_radio(seed, user_id=args.user)
            result = engine.get_next_tracks(args.count, user_id=args.user, current_track_id=args.current, now=now)
            _print_result(result, args.json)

        if args.save:
            engine.save()
    finally:
        engine.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point"""
    args = build_parser().parse_args(argv)
    try:
        return run(args)
    except FileNotFoundError as e:
        print(f"\nError: {e}\n", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"\nConfiguration Error: {e}\n", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
