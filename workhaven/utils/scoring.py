"""
Spot Scoring Utility
Aggregates user ratings and ranks spots for listing.
"""
from collections import Counter
from datetime import datetime
from functools import cmp_to_key
from typing import Dict, List, Optional, Sequence

from workhaven.models.spots import PlaceRecord, UserRating

# Noise label -> 0-5 score, unknown labels count as Medium
NOISE_SCORES = {
    "low": 5.0,
    "medium": 3.0,
    "high": 1.0,
}

# Spots whose distances differ by less than this are ranked by score instead
SIMILAR_DISTANCE_METERS = 100.0


def noise_score(noise: str) -> float:
    return NOISE_SCORES.get((noise or "").strip().lower(), 3.0)


def attribute_score(wifi: int, noise: str, outlets: bool) -> float:
    """Mean of the wifi, noise and outlet scores, each on a 0-5 scale."""
    outlets_score = 5.0 if outlets else 1.0
    return (float(wifi) + noise_score(noise) + outlets_score) / 3.0


def aggregate_rating(spot: PlaceRecord) -> float:
    return attribute_score(spot.wifi_rating, spot.noise_rating, spot.outlets)


def user_rating_average(ratings: Sequence[UserRating]) -> float:
    """Average per-rating score, 0 when there are no ratings."""
    if not ratings:
        return 0.0
    total = sum(attribute_score(r.wifi, r.noise, r.plugs) for r in ratings)
    return total / len(ratings)


def overall_rating(spot: PlaceRecord, ratings: Sequence[UserRating] = ()) -> float:
    """Half spot attributes, half user ratings; attributes only when unrated."""
    aggregate = aggregate_rating(spot)
    user_average = user_rating_average(ratings)
    if user_average == 0:
        return aggregate
    return aggregate * 0.5 + user_average * 0.5


def average_wifi_rating(spot: PlaceRecord, ratings: Sequence[UserRating] = ()) -> float:
    if not ratings:
        return float(spot.wifi_rating)
    return sum(r.wifi for r in ratings) / len(ratings)


def common_noise_rating(spot: PlaceRecord, ratings: Sequence[UserRating] = ()) -> str:
    if not ratings:
        return spot.noise_rating
    counts = Counter(r.noise for r in ratings)
    return counts.most_common(1)[0][0]


def outlet_availability_percentage(spot: PlaceRecord, ratings: Sequence[UserRating] = ()) -> float:
    if not ratings:
        return 100.0 if spot.outlets else 0.0
    with_outlets = sum(1 for r in ratings if r.plugs)
    return with_outlets / len(ratings) * 100.0


def sort_spots(
    spots: Sequence[PlaceRecord],
    ratings_by_spot: Optional[Dict[str, List[UserRating]]] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
) -> List[PlaceRecord]:
    """
    Closest spots first; spots at similar distances are ordered by overall rating.

    Without a location, spots are ordered by overall rating only.
    """
    ratings_by_spot = ratings_by_spot or {}
    scores = {s.id: overall_rating(s, ratings_by_spot.get(s.id, [])) for s in spots}

    if latitude is None or longitude is None:
        return sorted(spots, key=lambda s: scores[s.id], reverse=True)

    distances = {s.id: s.distance_to(latitude, longitude) for s in spots}

    def compare(a: PlaceRecord, b: PlaceRecord) -> int:
        da, db = distances[a.id], distances[b.id]
        if abs(da - db) > SIMILAR_DISTANCE_METERS:
            return -1 if da < db else 1
        if scores[a.id] == scores[b.id]:
            return 0
        return -1 if scores[a.id] > scores[b.id] else 1

    return sorted(spots, key=cmp_to_key(compare))


def needs_refresh(spots: Sequence[PlaceRecord], now: Optional[datetime] = None) -> bool:
    """A region needs discovery when it has no spots or any of them is stale."""
    if not spots:
        return True
    return any(spot.is_stale(now) for spot in spots)
