import logging
import os
from contextlib import asynccontextmanager
from typing import Annotated, Dict, List, Literal, Optional, Union

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from smartqueue.config_loader import Config
from smartqueue.embeddings.playlist_generator import PlaylistOptions
from smartqueue.engine import DEFAULT_USER, RecommendationEngine
from smartqueue.logging_utils import configure_logging
from smartqueue.models import AudioFeatures, RadioSeed, Track, UserEvent
from smartqueue.queue.smart_queue import ReplenishResult

logger = logging.getLogger(__name__)

CONFIG_PATH = os.getenv("SMARTQUEUE_CONFIG_PATH")

app = FastAPI(title="SmartQueue API")

config: Optional[Config] = None
engine: Optional[RecommendationEngine] = None

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class AudioFeaturesModel(BaseModel):
    energy: Optional[float] = Field(None, ge=0, le=1)
    valence: Optional[float] = Field(None, ge=0, le=1)
    danceability: Optional[float] = Field(None, ge=0, le=1)
    bpm: Optional[float] = Field(None, gt=0)
    key: Optional[Union[int, str]] = None


class TrackModel(BaseModel):
    id: str = Field(..., min_length=1)
    title: str = ""
    artists: List[str] = []
    genres: List[str] = []
    moods: List[str] = []
    duration: Optional[float] = None
    album: Optional[str] = None
    audio_features: Optional[AudioFeaturesModel] = None
    mood_confidence: Optional[float] = None

    def to_track(self) -> Track:
        return Track.from_dict(self.model_dump(exclude_none=True))


class RegisterRequest(BaseModel):
    tracks: List[TrackModel]
    enrich: bool = True


class EventRequest(BaseModel):
    type: Literal["listen", "skip", "like", "dislike", "download", "playlist-add"]
    track_id: str
    timestamp: Optional[float] = None
    track: Optional[TrackModel] = None
    duration: Optional[float] = None
    completed: bool = False
    strength: int = Field(1, ge=1, le=2)
    dislike_reason: Optional[str] = None


class RankRequest(BaseModel):
    track_ids: List[str]
    now: Optional[float] = None


class NextTracksRequest(BaseModel):
    count: int = Field(10, gt=0, le=100)
    current_track_id: Optional[str] = None
    upcoming_ids: List[str] = []
    now: Optional[float] = None


class ReplenishRequestModel(NextTracksRequest):
    remaining: int = Field(..., ge=0)


class ManualTrackRequest(BaseModel):
    track_id: str = Field(..., min_length=1)


class TrackSeed(BaseModel):
    type: Literal["track"]
    track_id: str = Field(..., description="Catalog track id")


class ArtistSeed(BaseModel):
    type: Literal["artist"]
    artist_name: str = Field(..., min_length=1)


class GenreSeed(BaseModel):
    type: Literal["genre"]
    genre: str = Field(..., min_length=1)


class RadioRequest(BaseModel):
    seed: Annotated[Union[TrackSeed, ArtistSeed, GenreSeed], Field(discriminator="type")]
    audio_features: Optional[AudioFeaturesModel] = None


class GenerateRequest(BaseModel):
    method: Literal["seed", "taste"] = "seed"
    seed_track_ids: List[str] = []
    length: int = Field(20, gt=0, le=200)
    max_per_artist: int = Field(2, gt=0)
    use_collaborative: bool = True


class QueueConfigUpdate(BaseModel):
    auto_queue_enabled: Optional[bool] = None
    auto_queue_threshold: Optional[int] = Field(None, ge=0)
    batch_size: Optional[int] = Field(None, gt=0)
    max_artist_per_batch: Optional[int] = Field(None, gt=0)
    limit_artist_repetition: Optional[bool] = None
    min_fetch_interval_s: Optional[float] = Field(None, ge=0)
    session_timeout_s: Optional[float] = Field(None, gt=0)
    max_session_history: Optional[int] = Field(None, gt=0)


class QueuedTrackResponse(BaseModel):
    track: Dict[str, object]
    score: float
    components: Dict[str, float]
    explanation: List[str]
    source: Dict[str, object]


class QueueResponse(BaseModel):
    tracks: List[QueuedTrackResponse]
    exploration_mode: str
    error: Optional[str] = None


def _init_services() -> None:
    """Initialize the shared engine once for the API process."""
    global config, engine
    if engine is not None:
        return

    config = Config(CONFIG_PATH)
    configure_logging(level=config.log_level, log_file=config.log_file)
    engine = RecommendationEngine.from_config(config)
    engine.load()


def _engine() -> RecommendationEngine:
    _init_services()
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


@asynccontextmanager
async def lifespan(_: FastAPI):
    _init_services()
    yield
    if engine is not None:
        engine.save()
        engine.close()


app.router.lifespan_context = lifespan


def _queue_response(result: ReplenishResult) -> QueueResponse:
    return QueueResponse(
        tracks=[
            QueuedTrackResponse(**scored.to_dict(), source=queued.source.to_dict())
            for scored, queued in zip(result.scored, result.tracks)
        ],
        exploration_mode=result.exploration_mode,
        error=result.error,
    )


@app.get("/api/status")
def get_status() -> Dict[str, object]:
    """Report catalog size, index size and known users."""
    eng = _engine()
    return {
        "tracks": eng.track_count,
        "indexed": len(eng.index),
        "users": eng.user_ids,
        "providers": eng.providers.names,
    }


@app.post("/api/tracks")
def register_tracks(request: RegisterRequest) -> Dict[str, int]:
    return _engine().register_tracks([t.to_track() for t in request.tracks], enrich=request.enrich)


@app.get("/api/tracks/{track_id}")
def get_track(track_id: str) -> Dict[str, object]:
    track = _engine().get_track(track_id)
    if track is None:
        raise HTTPException(status_code=404, detail="Track not found")
    return track.to_dict()


@app.post("/api/events")
def record_event(request: EventRequest, user_id: str = Query(DEFAULT_USER)) -> Dict[str, object]:
    """Feed a listen, skip, like, dislike, download or playlist-add event to the learners."""
    eng = _engine()
    payload = request.model_dump(exclude_none=True)
    if request.timestamp is None:
        payload["timestamp"] = eng.clock()
    event = UserEvent.from_dict(payload)
    outcome = eng.record_event(event, user_id=user_id)
    if outcome is None:
        raise HTTPException(status_code=404, detail="Track not found")
    return {
        "recorded": True,
        "taste_profile": outcome.taste_profile,
        "co_occurrence": outcome.co_occurrence,
    }


@app.post("/api/rank")
def rank_tracks(request: RankRequest, user_id: str = Query(DEFAULT_USER)) -> Dict[str, List[Dict[str, object]]]:
    eng = _engine()
    tracks = [t for t in (eng.get_track(tid) for tid in request.track_ids) if t is not None]
    ranked = eng.rank_candidates(tracks, user_id=user_id, now=request.now)
    return {"results": [s.to_dict() for s in ranked]}


@app.post("/api/queue/next", response_model=QueueResponse)
def next_tracks(request: NextTracksRequest, user_id: str = Query(DEFAULT_USER)) -> QueueResponse:
    """Gather, score and select the next tracks for the queue."""
    result = _engine().get_next_tracks(
        request.count,
        user_id=user_id,
        current_track_id=request.current_track_id,
        upcoming_ids=request.upcoming_ids,
        now=request.now,
    )
    return _queue_response(result)


@app.post("/api/queue/replenish")
def replenish(request: ReplenishRequestModel, user_id: str = Query(DEFAULT_USER)) -> Dict[str, object]:
    """Replenish only when the queue is running low and auto-queue or radio is on."""
    result = _engine().check_and_replenish(
        request.remaining,
        user_id=user_id,
        current_track_id=request.current_track_id,
        upcoming_ids=request.upcoming_ids,
        now=request.now,
    )
    if result is None:
        return {"replenished": False, "queue": None}
    return {"replenished": True, "queue": _queue_response(result).model_dump()}


@app.get("/api/queue/sources")
def queue_sources(user_id: str = Query(DEFAULT_USER)) -> Dict[str, Dict[str, object]]:
    return {tid: src.to_dict() for tid, src in _engine().get_queue_sources(user_id).items()}


@app.post("/api/queue/manual")
def add_manual_track(request: ManualTrackRequest, user_id: str = Query(DEFAULT_USER)) -> Dict[str, object]:
    """Record that the user queued a track by hand."""
    source = _engine().add_manual_track(request.track_id, user_id=user_id)
    if source is None:
        raise HTTPException(status_code=404, detail="Track not found")
    return source.to_dict()


@app.delete("/api/queue/sources/{track_id}")
def remove_queued_track(track_id: str, user_id: str = Query(DEFAULT_USER)) -> Dict[str, bool]:
    _engine().remove_queued_track(track_id, user_id=user_id)
    return {"ok": True}


@app.delete("/api/session")
def clear_session(user_id: str = Query(DEFAULT_USER)) -> Dict[str, bool]:
    _engine().clear_session(user_id=user_id)
    return {"ok": True}


@app.get("/api/queue/config")
def get_queue_config(user_id: str = Query(DEFAULT_USER)) -> Dict[str, object]:
    queue = _engine().user(user_id).queue
    return {"mode": queue.mode, "config": queue.config.to_dict()}


@app.put("/api/queue/config")
def update_queue_config(update: QueueConfigUpdate, user_id: str = Query(DEFAULT_USER)) -> Dict[str, object]:
    state = _engine().user(user_id)
    changes = update.model_dump(exclude_none=True)
    with state.lock:
        try:
            cfg = state.queue.update_config(**changes)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {"mode": state.queue.mode, "config": cfg.to_dict()}


@app.post("/api/radio")
def start_radio(request: RadioRequest, user_id: str = Query(DEFAULT_USER)) -> Dict[str, object]:
    eng = _engine()
    seed = request.seed
    if seed.type == "track":
        if eng.get_track(seed.track_id) is None:
            raise HTTPException(status_code=404, detail="Seed track not found")
        radio_seed = RadioSeed("track", seed.track_id)
    elif seed.type == "artist":
        radio_seed = RadioSeed("artist", seed.artist_name, name=seed.artist_name)
    else:
        radio_seed = RadioSeed("genre", seed.genre, name=seed.genre, genres=[seed.genre])
    if request.audio_features is not None:
        radio_seed.audio_features = AudioFeatures.from_dict(request.audio_features.model_dump(exclude_none=True))
    started = eng.start_radio(radio_seed, user_id=user_id)
    return {"mode": "radio", "seed": started.to_dict()}


@app.delete("/api/radio")
def stop_radio(user_id: str = Query(DEFAULT_USER)) -> Dict[str, str]:
    eng = _engine()
    eng.stop_radio(user_id=user_id)
    return {"mode": eng.user(user_id).queue.mode}


@app.get("/api/similar/{track_id}")
def similar_tracks(
    track_id: str,
    k: int = Query(10, ge=1, le=100),
    user_id: Optional[str] = Query(None),
) -> Dict[str, List[Dict[str, object]]]:
    eng = _engine()
    if eng.get_track(track_id) is None:
        raise HTTPException(status_code=404, detail="Track not found")
    results = eng.similar_tracks(track_id, k, user_id=user_id)
    return {"results": [{"track_id": tid, "score": round(score, 4)} for tid, score in results]}


@app.post("/api/playlist/generate")
def generate_playlist(request: GenerateRequest, user_id: str = Query(DEFAULT_USER)) -> Dict[str, object]:
    """Generate a playlist from seed tracks or from the user's taste profile."""
    try:
        options = PlaylistOptions(
            method=request.method,
            seed_track_ids=tuple(request.seed_track_ids),
            limit=request.length,
            max_per_artist=request.max_per_artist,
            use_collaborative=request.use_collaborative,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _engine().generate_playlist(options, user_id=user_id).to_dict()


@app.get("/api/search")
def search(
    q: str = Query(..., min_length=1),
    limit: int = Query(15, ge=1, le=50),
    user_id: str = Query(DEFAULT_USER),
) -> Dict[str, List[Dict[str, object]]]:
    hits = _engine().search(q, user_id=user_id, limit=limit)
    return {"results": [t.to_dict() for t in hits]}


@app.post("/api/maintain")
def maintain() -> Dict[str, int]:
    return {"pruned": _engine().maintain()}


@app.post("/api/save")
def save() -> Dict[str, bool]:
    _engine().save()
    return {"ok": True}
