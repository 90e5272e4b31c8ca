"""
Per-source content indexes built from extracted appearance and segment records.

All functions here are pure: they never perform I/O and never mutate their
inputs. Storage is handled by vidindex.builder (write) and vidindex.search
(read).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .bloom import BloomFilter
from .hashing import HashFamily
from .manifests import (
    ABSENT,
    GlobalMomentIndex,
    IndexStats,
    MomentAngle,
    MomentEntity,
    MomentIndex,
    PersonAppearance,
    PersonEntity,
    PersonIndex,
    SegmentReference,
    TimeIndex,
    TimeRange,
    utc_now_iso,
)
from .sketch import CountMinSketch


def to_instant(value: Any) -> float:
    """Seconds since the epoch for an ISO-8601 string, datetime or number.

    Naive timestamps are taken as UTC. Plain numbers pass through so that
    offsets (seconds into a recording) compare the same way.
    """
    if isinstance(value, bool):
        raise TypeError(f"Not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if text[-1:] in ("Z", "z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Unrecognized timestamp: {value!r}") from None
    else:
        raise TypeError(f"Not a timestamp: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _earliest(a: Any, b: Any) -> Any:
    return b if to_instant(b) < to_instant(a) else a


def _latest(a: Any, b: Any) -> Any:
    return b if to_instant(b) > to_instant(a) else a


# ---------------------------------------------------------------------------
# Raw inputs
# ---------------------------------------------------------------------------


@dataclass
class SegmentInput:
    id: str
    sequence: int
    start_time: Any
    end_time: Any
    duration: float
    uri: str
    has_motion: bool = False
    has_audio: bool = False
    byte_size: Any = ABSENT
    face_count: Any = ABSENT
    thumbnail_uri: Any = ABSENT
    moment_id: Any = ABSENT

    @classmethod
    def from_dict(cls, data: dict) -> "SegmentInput":
        return cls(
            id=data["id"],
            sequence=int(data["sequence"]),
            start_time=data["start_time"],
            end_time=data["end_time"],
            duration=data["duration"],
            uri=data["uri"],
            has_motion=bool(data.get("has_motion", False)),
            has_audio=bool(data.get("has_audio", False)),
            byte_size=data.get("byte_size", ABSENT),
            face_count=data.get("face_count", ABSENT),
            thumbnail_uri=data.get("thumbnail_uri", ABSENT),
            moment_id=data.get("moment_id", ABSENT),
        )


@dataclass
class AppearanceInput:
    """One detected appearance of a person inside a segment."""

    person_id: str
    segment_id: str
    start_time: Any
    end_time: Any
    start_offset: float
    end_offset: float
    frame_count: int
    confidence_avg: float
    confidence_min: float
    thumbnail_uri: Any = ABSENT

    @classmethod
    def from_dict(cls, data: dict) -> "AppearanceInput":
        return cls(
            person_id=data["person_id"],
            segment_id=data["segment_id"],
            start_time=data["start_time"],
            end_time=data["end_time"],
            start_offset=float(data["start_offset"]),
            end_offset=float(data["end_offset"]),
            frame_count=int(data["frame_count"]),
            confidence_avg=float(data["confidence_avg"]),
            confidence_min=float(data["confidence_min"]),
            thumbnail_uri=data.get("thumbnail_uri", ABSENT),
        )


# ---------------------------------------------------------------------------
# Time index
# ---------------------------------------------------------------------------


def build_time_index(
    source_id: str,
    segments: Iterable[SegmentInput],
    wedding_id: Any = ABSENT,
    target_duration: float = 60,
) -> TimeIndex:
    refs = [
        SegmentReference(
            id=seg.id,
            sequence=seg.sequence,
            time_range=TimeRange(seg.start_time, seg.end_time),
            duration=seg.duration,
            uri=seg.uri,
            has_motion=seg.has_motion,
            has_audio=seg.has_audio,
            byte_size=seg.byte_size,
            detection_summary={"faces": seg.face_count} if seg.face_count else ABSENT,
            thumbnail_uri=seg.thumbnail_uri,
            moment_id=seg.moment_id,
        )
        for seg in segments
    ]
    refs.sort(key=lambda ref: ref.sequence)
    return TimeIndex(
        videographer_id=source_id,
        wedding_id=wedding_id,
        target_duration=target_duration,
        segments=refs,
    )


def find_in_range(index: TimeIndex, start: Any, end: Any) -> List[SegmentReference]:
    """Segments whose [start, end) overlaps the half-open window [start, end).

    A zero-width window (start == end) selects the segment covering that instant.
    """
    lo, hi = to_instant(start), to_instant(end)
    if hi < lo:
        raise ValueError(f"Range end {end!r} is before start {start!r}")
    return [
        seg
        for seg in index.segments
        if to_instant(seg.time_range.start) < hi and to_instant(seg.time_range.end) > lo
    ]


# ---------------------------------------------------------------------------
# Person index
# ---------------------------------------------------------------------------


def _stats(entities: Dict[str, PersonEntity]) -> IndexStats:
    return IndexStats(
        unique_entities=len(entities),
        total_appearances=sum(len(e.appearances) for e in entities.values()),
    )


def build_person_index(
    source_id: str,
    appearances: Iterable[AppearanceInput],
    wedding_id: Any = ABSENT,
) -> PersonIndex:
    entities: Dict[str, PersonEntity] = {}
    for app in appearances:
        entity = entities.get(app.person_id)
        if entity is None:
            entity = PersonEntity(
                person_id=app.person_id,
                first_seen=app.start_time,
                last_seen=app.end_time,
            )
            entities[app.person_id] = entity
        else:
            entity.first_seen = _earliest(entity.first_seen, app.start_time)
            entity.last_seen = _latest(entity.last_seen, app.end_time)
        entity.total_frames += app.frame_count
        entity.total_duration_seconds += app.end_offset - app.start_offset
        entity.appearances.append(
            PersonAppearance(
                segment_id=app.segment_id,
                time_range=TimeRange(app.start_time, app.end_time),
                frame_count=app.frame_count,
                confidence_avg=app.confidence_avg,
                confidence_min=app.confidence_min,
                thumbnail_uri=app.thumbnail_uri,
            )
        )

    return PersonIndex(
        videographer_id=source_id,
        wedding_id=wedding_id,
        updated_at=utc_now_iso(),
        entities=entities,
        stats=_stats(entities),
    )


def filter_by_confidence(index: PersonIndex, threshold: float) -> PersonIndex:
    """New index keeping appearances with confidence_avg >= threshold.

    Entities left without appearances are dropped; total_frames and stats are
    recomputed from what remains.
    """
    entities: Dict[str, PersonEntity] = {}
    for person_id, entity in index.entities.items():
        kept = [app for app in entity.appearances if app.confidence_avg >= threshold]
        if not kept:
            continue
        entities[person_id] = replace(
            entity,
            appearances=kept,
            total_frames=sum(app.frame_count for app in kept),
        )
    return replace(index, entities=entities, stats=_stats(entities), updated_at=utc_now_iso())


def _add_counts(existing: Any, extra: Any) -> Any:
    if extra is ABSENT or extra is None:
        return existing
    merged = {} if existing is ABSENT or existing is None else dict(existing)
    for other_id, count in extra.items():
        merged[other_id] = merged.get(other_id, 0) + count
    return merged


def merge_person_indexes(indexes: Sequence[PersonIndex]) -> PersonIndex:
    """Union several per-source person indexes into one cross-source view.

    Co-occurrence counts are summed per companion across sources.
    """
    if not indexes:
        raise ValueError("Cannot merge empty list of indexes")

    entities: Dict[str, PersonEntity] = {}
    for index in indexes:
        for person_id, entity in index.entities.items():
            merged = entities.get(person_id)
            if merged is None:
                merged = PersonEntity(
                    person_id=person_id,
                    first_seen=entity.first_seen,
                    last_seen=entity.last_seen,
                    name=entity.name,
                    role=entity.role,
                )
                entities[person_id] = merged
            else:
                merged.first_seen = _earliest(merged.first_seen, entity.first_seen)
                merged.last_seen = _latest(merged.last_seen, entity.last_seen)
            merged.co_occurrences = _add_counts(merged.co_occurrences, entity.co_occurrences)
            merged.total_frames += entity.total_frames
            merged.total_duration_seconds += entity.total_duration_seconds
            merged.appearances.extend(entity.appearances)

    wedding_ids = {index.wedding_id for index in indexes}
    return PersonIndex(
        videographer_id="global",
        wedding_id=wedding_ids.pop() if len(wedding_ids) == 1 else ABSENT,
        updated_at=utc_now_iso(),
        entities=entities,
        stats=_stats(entities),
    )


def find_person_segments(index: PersonIndex, person_id: str) -> List[str]:
    entity = index.entities.get(person_id)
    if entity is None:
        return []
    return [app.segment_id for app in entity.appearances]


def find_people_in_segment(index: PersonIndex, segment_id: str) -> List[str]:
    return [
        person_id
        for person_id, entity in index.entities.items()
        if any(app.segment_id == segment_id for app in entity.appearances)
    ]


def top_people(index: PersonIndex, n: int) -> List[Tuple[str, int]]:
    """(person_id, appearance_count) for the n most frequently seen people."""
    counts = [(pid, len(e.appearances)) for pid, e in index.entities.items()]
    counts.sort(key=lambda pair: pair[1], reverse=True)
    return counts[:n]


# ---------------------------------------------------------------------------
# Moment index
# ---------------------------------------------------------------------------


def build_moment_index(
    source_id: str,
    moments: Iterable[MomentEntity],
    wedding_id: Any = ABSENT,
) -> MomentIndex:
    return MomentIndex(
        videographer_id=source_id,
        wedding_id=wedding_id,
        updated_at=utc_now_iso(),
        moments={moment.moment_id: moment for moment in moments},
    )


def _union(existing: Any, extra: Any) -> Any:
    if extra is ABSENT or extra is None:
        return existing
    merged = [] if existing is ABSENT or existing is None else list(existing)
    for item in extra:
        if item not in merged:
            merged.append(item)
    return merged


def build_global_moment_indexes(
    wedding_id: str, moment_indexes: Sequence[MomentIndex]
) -> Dict[str, GlobalMomentIndex]:
    """Multi-angle descriptors, one per moment id, sources in the given order."""
    out: Dict[str, GlobalMomentIndex] = {}
    for index in moment_indexes:
        for moment_id, moment in index.moments.items():
            angle = MomentAngle(videographer_id=index.videographer_id, segments=list(moment.segments))
            current = out.get(moment_id)
            if current is None:
                out[moment_id] = GlobalMomentIndex(
                    wedding_id=wedding_id,
                    moment_id=moment_id,
                    name=moment.name,
                    moment_type=moment.moment_type,
                    start_time=moment.start_time,
                    end_time=moment.end_time,
                    duration=moment.duration,
                    videographers=[angle],
                    people_featured=_union(ABSENT, moment.people_featured),
                    tags=_union(ABSENT, moment.tags),
                )
                continue
            current.videographers.append(angle)
            current.start_time = _earliest(current.start_time, moment.start_time)
            current.end_time = _latest(current.end_time, moment.end_time)
            current.duration = max(current.duration, moment.duration)
            current.people_featured = _union(current.people_featured, moment.people_featured)
            current.tags = _union(current.tags, moment.tags)
    return out


# ---------------------------------------------------------------------------
# Filters and sketches
# ---------------------------------------------------------------------------


def build_people_bloom_filter(
    index: PersonIndex,
    fp_rate: float = 0.01,
    expected_items: Optional[int] = None,
    hash_family: HashFamily = HashFamily.LEGACY,
    min_expected_items: int = 100,
) -> BloomFilter:
    """Bloom filter over person ids.

    Pass the same expected_items for every source of a wedding so the
    per-source filters can be merged into the global one.
    """
    person_ids = list(index.entities)
    n = expected_items or max(len(person_ids), min_expected_items)
    bf = BloomFilter(n, fp_rate, hash_family)
    for person_id in person_ids:
        bf.add(person_id)
    return bf


def build_moments_bloom_filter(
    index: MomentIndex,
    fp_rate: float = 0.01,
    hash_family: HashFamily = HashFamily.LEGACY,
    min_expected_items: int = 100,
) -> BloomFilter:
    """Bloom filter over moment ids and their tags."""
    items: List[str] = []
    for moment_id, moment in index.moments.items():
        items.append(moment_id)
        if moment.tags:
            items.extend(moment.tags)
    bf = BloomFilter(max(len(items), min_expected_items), fp_rate, hash_family)
    for item in items:
        bf.add(item)
    return bf


def build_people_sketch(
    index: PersonIndex,
    width: int = 10000,
    depth: int = 5,
    hash_family: HashFamily = HashFamily.LEGACY,
) -> CountMinSketch:
    """Person id -> appearance count."""
    sketch = CountMinSketch(width, depth, hash_family)
    for person_id, entity in index.entities.items():
        sketch.add(person_id, len(entity.appearances))
    return sketch
