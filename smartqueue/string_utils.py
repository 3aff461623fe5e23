"""
String normalization shared by artist, genre and title comparisons.
"""
import unicodedata

_GENRE_ABBREVIATIONS = {
    "rnb": "r&b",
    "r and b": "r&b",
    "rhythm and blues": "r&b",
    "dnb": "drum and bass",
    "d&b": "drum and bass",
    "hiphop": "hip hop",
    "hip-hop": "hip hop",
    "edm": "electronic",
}

# Quote and dash variants collapsed before comparisons
_TYPOGRAPHY_TRANSLATION = {
    ord("‘"): "'",
    ord("’"): "'",
    ord("‚"): "'",
    ord("′"): "'",
    ord("“"): '"',
    ord("”"): '"',
    ord("„"): '"',
    ord("‐"): "-",
    ord("‑"): "-",
    ord("‒"): "-",
    ord("–"): "-",
    ord("—"): "-",
    ord("−"): "-",
}


def normalize_text(text: str, lowercase: bool = True) -> str:
    """
    NFC-normalize, casefold and trim text.

    Typography variants (curly quotes, unicode dashes) are mapped to their
    ASCII forms so "Don’t" and "Don't" compare equal.
    """
    if text is None:
        return ""
    text = unicodedata.normalize("NFC", str(text)).translate(_TYPOGRAPHY_TRANSLATION)
    if lowercase:
        text = text.casefold()
    return text.strip()


def normalize_genre(genre: str) -> str:
    """Normalize a genre tag to the key used by affinities and embeddings."""
    if not genre:
        return ""
    genre = normalize_text(genre)
    genre = genre.replace("_", " ").replace("/", " ")
    genre = " ".join(genre.split())
    genre = _GENRE_ABBREVIATIONS.get(genre, genre)
    return genre.replace("-", " ")


def normalize_artist_key(name: str) -> str:
    """
    Normalize an artist name to a stable comparison key.

    Diacritics are removed, punctuation becomes whitespace and the result is
    casefolded. Punctuation-only names ("!!!") keep their punctuation so they
    still produce a non-empty key.
    """
    if not name:
        return ""
    text = str(name).strip().translate(_TYPOGRAPHY_TRANSLATION)
    if not text:
        return ""
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch)).casefold()
    normalized = "".join(
        " " if unicodedata.category(ch).startswith("P") else ch for ch in text
    )
    normalized = " ".join(normalized.split())
    return normalized or " ".join(text.split())
