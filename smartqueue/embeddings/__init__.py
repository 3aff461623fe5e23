from .cooccurrence import CoOccurrenceConfig, CoOccurrenceMatrix, blend_with_embeddings
from .embedding_engine import (
    EMBEDDING_DIM,
    EmbeddingConfig,
    EmbeddingEngine,
    TrackEmbedding,
    cosine_similarity,
)
from .playlist_generator import GeneratedPlaylist, PlaylistGenerator, PlaylistOptions
from .taste_profile import TasteProfileConfig, TasteProfileManager, recency_decay
from .vector_index import IndexConfig, VectorIndex

__all__ = [
    "CoOccurrenceConfig",
    "CoOccurrenceMatrix",
    "blend_with_embeddings",
    "EMBEDDING_DIM",
    "EmbeddingConfig",
    "EmbeddingEngine",
    "TrackEmbedding",
    "cosine_similarity",
    "GeneratedPlaylist",
    "PlaylistGenerator",
    "PlaylistOptions",
    "TasteProfileConfig",
    "TasteProfileManager",
    "recency_decay",
    "IndexConfig",
    "VectorIndex",
]
