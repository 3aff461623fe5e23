"""
Transition Scoring
==================

Flow between the track that is playing and a candidate that might follow it.

Three independent terms:
- Energy: smooth changes earn up to +15, jumps past 0.3 are penalized
- BPM: +10 under 15% difference, +5 under 30%, -10 beyond
- Key: Circle-of-Fifths compatibility, up to +10

Keys are positions on the Circle of Fifths; relative minors share the
position of their relative major (Am sits with C).
"""

import re
from typing import Optional, Sequence, Tuple, Union

KEY_POSITIONS = {
    "C": 0, "G": 1, "D": 2, "A": 3, "E": 4, "B": 5,
    "F#": 6, "Gb": 6, "C#": 7, "Db": 7, "Ab": 8, "G#": 8,
    "Eb": 9, "D#": 9, "Bb": 10, "A#": 10, "F": 11,
    "Am": 0, "Em": 1, "Bm": 2, "F#m": 3, "C#m": 4, "G#m": 5,
    "D#m": 6, "Ebm": 6, "A#m": 7, "Bbm": 7, "Fm": 8, "Cm": 9,
    "Gm": 10, "Dm": 11,
}

CIRCLE_SIZE = 12
KEY_STEP_PENALTY = 0.2

ENERGY_SMOOTH_RANGE = 0.3
ENERGY_SMOOTH_BONUS = 15.0
ENERGY_JUMP_PENALTY = 20.0

BPM_CLOSE_RATIO = 0.15
BPM_ACCEPTABLE_RATIO = 0.30
BPM_CLOSE_BONUS = 10.0
BPM_ACCEPTABLE_BONUS = 5.0
BPM_JUMP_PENALTY = -10.0

KEY_MAX_BONUS = 10.0

_MINOR_SUFFIX = re.compile(r"\s*(minor|min)$", re.IGNORECASE)
_MAJOR_SUFFIX = re.compile(r"\s*(major|maj)$", re.IGNORECASE)


def key_position(key: Union[str, int, None]) -> Optional[int]:
    """
    Map a key to its Circle-of-Fifths position (0-11).

    Accepts names like "C", "F#m", "A minor", "Bb major", or a major pitch
    class integer (C=0 ... B=11). Returns None when the key is unknown.
    """
    if key is None or isinstance(key, bool):
        return None
    if isinstance(key, int):
        if not 0 <= key < CIRCLE_SIZE:
            return None
        return (key * 7) % CIRCLE_SIZE

    text = str(key).strip()
    if not text:
        return None
    if _MINOR_SUFFIX.search(text):
        text = _MINOR_SUFFIX.sub("", text) + "m"
    else:
        text = _MAJOR_SUFFIX.sub("", text)
    text = text.replace(" ", "").replace("♯", "#").replace("♭", "b")
    if not text:
        return None
    text = text[0].upper() + text[1:]
    return KEY_POSITIONS.get(text)


def circle_distance(pos1: int, pos2: int) -> int:
    """Shortest number of steps between two circle positions."""
    clockwise = (pos2 - pos1) % CIRCLE_SIZE
    return min(clockwise, CIRCLE_SIZE - clockwise)


def key_compatibility(key1, key2) -> Optional[float]:
    """
    Harmonic compatibility in [0, 1]: max(0, 1 - distance * 0.2).

    Returns None if either key is unknown.
    """
    pos1 = key_position(key1)
    pos2 = key_position(key2)
    if pos1 is None or pos2 is None:
        return None
    return max(0.0, 1.0 - circle_distance(pos1, pos2) * KEY_STEP_PENALTY)


def energy_transition_score(previous: float, candidate: float) -> float:
    diff = abs(candidate - previous)
    if diff <= ENERGY_SMOOTH_RANGE:
        return ENERGY_SMOOTH_BONUS * (1.0 - diff / ENERGY_SMOOTH_RANGE)
    return -ENERGY_JUMP_PENALTY * (diff - ENERGY_SMOOTH_RANGE)


def bpm_transition_score(previous: float, candidate: float) -> float:
    if previous <= 0 or candidate <= 0:
        return 0.0
    ratio = abs(candidate - previous) / previous
    if ratio < BPM_CLOSE_RATIO:
        return BPM_CLOSE_BONUS
    if ratio < BPM_ACCEPTABLE_RATIO:
        return BPM_ACCEPTABLE_BONUS
    return BPM_JUMP_PENALTY


def compute_flow_score(
    *,
    candidate_energy: Optional[float],
    candidate_bpm: Optional[float],
    candidate_key,
    recent_energy: Sequence[float] = (),
    previous_bpm: Optional[float] = None,
    previous_key=None,
) -> Tuple[float, list]:
    """
    Flow score of a candidate following the current session.

    The energy reference is the mean of the recent session energies. Missing
    features on either side contribute nothing.

    Returns:
        (score, explanation reasons)
    """
    score = 0.0
    reasons = []

    if candidate_energy is not None and recent_energy:
        reference = sum(recent_energy) / len(recent_energy)
        energy_part = energy_transition_score(reference, candidate_energy)
        score += energy_part
        if energy_part >= ENERGY_SMOOTH_BONUS / 2:
            reasons.append("Smooth energy transition")

    if candidate_bpm is not None and previous_bpm is not None:
        bpm_part = bpm_transition_score(previous_bpm, candidate_bpm)
        score += bpm_part
        if bpm_part == BPM_CLOSE_BONUS:
            reasons.append("Matching tempo")

    compat = key_compatibility(previous_key, candidate_key)
    if compat is not None:
        score += compat * KEY_MAX_BONUS
        if compat >= 0.8:
            reasons.append("Harmonic key match")

    return score, reasons
