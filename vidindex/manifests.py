"""
Typed, versioned JSON manifests and index records.

Every stored JSON object is mapped onto a dataclass with ``to_dict`` /
``from_dict``. Optional fields default to ``ABSENT``: the key is left out of
the JSON entirely. ``None`` is written as ``null`` and ``[]`` as ``[]``, so
all three states survive a read/write cycle unchanged.
"""

from __future__ import annotations

import gzip
import json
import zlib
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union

from . import keys
from .errors import CorruptData

MANIFEST_VERSION = "1.0"
SUPPORTED_MAJOR = "1"
GZIP_MAGIC = b"\x1f\x8b"


class _Absent:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"

    def __reduce__(self):
        return (_Absent, ())


ABSENT: Any = _Absent()

R = TypeVar("R", bound="Record")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _encode(value: Any) -> Any:
    if isinstance(value, Record):
        return value.to_dict()
    if isinstance(value, list):
        return [_encode(v) for v in value]
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    return value


def _req(data: dict, key: str, owner: str) -> Any:
    try:
        return data[key]
    except KeyError:
        raise CorruptData(f"{owner} is missing required field {key!r}") from None


def _opt(data: dict, key: str, convert: Optional[Callable[[Any], Any]] = None) -> Any:
    if key not in data:
        return ABSENT
    value = data[key]
    if value is None or convert is None:
        return value
    return convert(value)


def _list_of(cls: Type[R]) -> Callable[[list], List[R]]:
    return lambda items: [cls.from_dict(item) for item in items]


def _check_version(data: dict, owner: str) -> str:
    version = str(_req(data, "version", owner))
    if version.split(".")[0] != SUPPORTED_MAJOR:
        raise CorruptData(f"Unsupported {owner} version: {version}")
    return version


class Record:
    """Mixin: JSON mapping that omits ABSENT fields."""

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is ABSENT:
                continue
            out[f.name] = _encode(value)
        if "version" in out:
            out = {"version": out.pop("version"), **out}
        return out

    @classmethod
    def from_dict(cls: Type[R], data: dict) -> R:  # pragma: no cover - overridden
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Shared records
# ---------------------------------------------------------------------------


@dataclass
class TimeRange(Record):
    start: Any
    end: Any

    @classmethod
    def from_dict(cls, data: dict) -> "TimeRange":
        return cls(start=_req(data, "start", "time_range"), end=_req(data, "end", "time_range"))


# ---------------------------------------------------------------------------
# Wedding manifest
# ---------------------------------------------------------------------------


@dataclass
class VideographerInfo(Record):
    id: str
    name: str
    role: str = "primary"  # primary | guest | drone | backup
    operator: Any = ABSENT
    manifest_uri: Any = ABSENT
    status: Any = ABSENT
    capabilities: Any = ABSENT

    @classmethod
    def from_dict(cls, data: dict) -> "VideographerInfo":
        return cls(
            id=_req(data, "id", "videographer"),
            name=_req(data, "name", "videographer"),
            role=data.get("role", "primary"),
            operator=_opt(data, "operator"),
            manifest_uri=_opt(data, "manifest_uri"),
            status=_opt(data, "status"),
            capabilities=_opt(data, "capabilities", list),
        )


@dataclass
class KeyPerson(Record):
    id: str
    name: str
    role: str

    @classmethod
    def from_dict(cls, data: dict) -> "KeyPerson":
        return cls(
            id=_req(data, "id", "key_person"),
            name=_req(data, "name", "key_person"),
            role=_req(data, "role", "key_person"),
        )


@dataclass
class RetentionPolicy(Record):
    raw_video_days: int = 90
    indexes_days: int = 365
    moments_days: int = 730

    @classmethod
    def from_dict(cls, data: dict) -> "RetentionPolicy":
        return cls(
            raw_video_days=_req(data, "raw_video_days", "retention_policy"),
            indexes_days=_req(data, "indexes_days", "retention_policy"),
            moments_days=_req(data, "moments_days", "retention_policy"),
        )


@dataclass
class IndexSettings(Record):
    bloom_filter_fp_rate: float = 0.01
    segment_duration_seconds: int = 60
    detection_models: Any = ABSENT

    @classmethod
    def from_dict(cls, data: dict) -> "IndexSettings":
        return cls(
            bloom_filter_fp_rate=_req(data, "bloom_filter_fp_rate", "index_config"),
            segment_duration_seconds=_req(data, "segment_duration_seconds", "index_config"),
            detection_models=_opt(data, "detection_models", list),
        )


@dataclass
class WeddingManifest(Record):
    wedding_id: str
    wedding_name: str
    wedding_date: str
    videographers: List[VideographerInfo]
    key_people: List[KeyPerson]
    timeline: Dict[str, str] = field(default_factory=dict)
    location: Any = ABSENT
    retention_policy: Any = ABSENT
    index_config: Any = ABSENT
    version: str = MANIFEST_VERSION

    def source(self, source_id: str) -> Optional[VideographerInfo]:
        for info in self.videographers:
            if info.id == source_id:
                return info
        return None

    def key_person(self, person_id: str) -> Optional[KeyPerson]:
        for person in self.key_people:
            if person.id == person_id:
                return person
        return None

    @classmethod
    def from_dict(cls, data: dict) -> "WeddingManifest":
        owner = "wedding manifest"
        return cls(
            version=_check_version(data, owner),
            wedding_id=_req(data, "wedding_id", owner),
            wedding_name=_req(data, "wedding_name", owner),
            wedding_date=_req(data, "wedding_date", owner),
            videographers=_list_of(VideographerInfo)(_req(data, "videographers", owner)),
            key_people=_list_of(KeyPerson)(data.get("key_people", [])),
            timeline=dict(data.get("timeline") or {}),
            location=_opt(data, "location"),
            retention_policy=_opt(data, "retention_policy", RetentionPolicy.from_dict),
            index_config=_opt(data, "index_config", IndexSettings.from_dict),
        )


# ---------------------------------------------------------------------------
# Source (videographer) manifest
# ---------------------------------------------------------------------------


@dataclass
class IndexReference(Record):
    uri: str
    updated_at: str

    @classmethod
    def from_dict(cls, data: dict) -> "IndexReference":
        return cls(uri=_req(data, "uri", "index reference"), updated_at=data.get("updated_at", ""))


@dataclass
class TimeIndices(Record):
    live: Any = ABSENT
    full: Any = ABSENT

    @classmethod
    def from_dict(cls, data: dict) -> "TimeIndices":
        return cls(live=_opt(data, "live"), full=_opt(data, "full", IndexReference.from_dict))


@dataclass
class ContentIndices(Record):
    # keys: people, moments, global
    bloom: Dict[str, str] = field(default_factory=dict)
    sketches: Any = ABSENT
    people: Any = ABSENT
    moments: Any = ABSENT
    transcript: Any = ABSENT

    @classmethod
    def from_dict(cls, data: dict) -> "ContentIndices":
        return cls(
            bloom=dict(data.get("bloom") or {}),
            sketches=_opt(data, "sketches"),
            people=_opt(data, "people"),
            moments=_opt(data, "moments"),
            transcript=_opt(data, "transcript"),
        )


@dataclass
class SourceIndices(Record):
    time: TimeIndices
    content: ContentIndices

    @classmethod
    def from_dict(cls, data: dict) -> "SourceIndices":
        return cls(
            time=TimeIndices.from_dict(data.get("time") or {}),
            content=ContentIndices.from_dict(data.get("content") or {}),
        )


@dataclass
class SourceStats(Record):
    total_segments: int
    total_duration_hours: float
    unique_people_detected: Any = ABSENT
    moments_captured: Any = ABSENT

    @classmethod
    def from_dict(cls, data: dict) -> "SourceStats":
        return cls(
            total_segments=_req(data, "total_segments", "source stats"),
            total_duration_hours=_req(data, "total_duration_hours", "source stats"),
            unique_people_detected=_opt(data, "unique_people_detected"),
            moments_captured=_opt(data, "moments_captured"),
        )


@dataclass
class SourceManifest(Record):
    videographer_id: str
    wedding_id: str
    updated_at: str
    indices: SourceIndices
    stats: SourceStats
    version: str = MANIFEST_VERSION

    @classmethod
    def from_dict(cls, data: dict) -> "SourceManifest":
        owner = "videographer manifest"
        return cls(
            version=_check_version(data, owner),
            videographer_id=_req(data, "videographer_id", owner),
            wedding_id=_req(data, "wedding_id", owner),
            updated_at=data.get("updated_at", ""),
            indices=SourceIndices.from_dict(_req(data, "indices", owner)),
            stats=SourceStats.from_dict(_req(data, "stats", owner)),
        )


# ---------------------------------------------------------------------------
# Segment manifest
# ---------------------------------------------------------------------------


@dataclass
class VideoVariant(Record):
    uri: str
    codec: str
    bitrate: int
    byte_size: int
    resolution: Any = ABSENT  # e.g. "1920x1080"; audio variants have none

    @classmethod
    def from_dict(cls, data: dict) -> "VideoVariant":
        return cls(
            uri=_req(data, "uri", "variant"),
            codec=_req(data, "codec", "variant"),
            bitrate=_req(data, "bitrate", "variant"),
            byte_size=data.get("byte_size", 0),
            resolution=_opt(data, "resolution"),
        )


@dataclass
class VideoVariants(Record):
    full: VideoVariant
    low: Any = ABSENT
    audio_only: Any = ABSENT

    @classmethod
    def from_dict(cls, data: dict) -> "VideoVariants":
        return cls(
            full=VideoVariant.from_dict(_req(data, "full", "variants")),
            low=_opt(data, "low", VideoVariant.from_dict),
            audio_only=_opt(data, "audio_only", VideoVariant.from_dict),
        )


@dataclass
class SegmentManifest(Record):
    segment_id: str
    videographer_id: str
    sequence: int
    time_range: TimeRange
    duration: float
    variants: VideoVariants
    thumbnail_uri: str
    wedding_id: Any = ABSENT
    keyframes: Any = ABSENT
    detections: Any = ABSENT
    moment_id: Any = ABSENT
    version: str = MANIFEST_VERSION

    @classmethod
    def from_dict(cls, data: dict) -> "SegmentManifest":
        owner = "segment manifest"
        return cls(
            version=_check_version(data, owner),
            segment_id=_req(data, "segment_id", owner),
            videographer_id=_req(data, "videographer_id", owner),
            sequence=_req(data, "sequence", owner),
            time_range=TimeRange.from_dict(_req(data, "time_range", owner)),
            duration=float(_req(data, "duration", owner)),
            variants=VideoVariants.from_dict(_req(data, "variants", owner)),
            thumbnail_uri=data.get("thumbnail_uri", ""),
            wedding_id=_opt(data, "wedding_id"),
            keyframes=_opt(data, "keyframes"),
            detections=_opt(data, "detections"),
            moment_id=_opt(data, "moment_id"),
        )


# ---------------------------------------------------------------------------
# Time index
# ---------------------------------------------------------------------------


@dataclass
class SegmentReference(Record):
    id: str
    sequence: int
    time_range: TimeRange
    duration: float
    uri: str
    has_motion: bool = False
    has_audio: bool = False
    byte_size: Any = ABSENT
    detection_summary: Any = ABSENT
    thumbnail_uri: Any = ABSENT
    moment_id: Any = ABSENT

    @classmethod
    def from_dict(cls, data: dict) -> "SegmentReference":
        owner = "segment reference"
        return cls(
            id=_req(data, "id", owner),
            sequence=_req(data, "sequence", owner),
            time_range=TimeRange.from_dict(_req(data, "time_range", owner)),
            duration=float(_req(data, "duration", owner)),
            uri=_req(data, "uri", owner),
            has_motion=bool(data.get("has_motion", False)),
            has_audio=bool(data.get("has_audio", False)),
            byte_size=_opt(data, "byte_size"),
            detection_summary=_opt(data, "detection_summary", dict),
            thumbnail_uri=_opt(data, "thumbnail_uri"),
            moment_id=_opt(data, "moment_id"),
        )


@dataclass
class TimeIndex(Record):
    videographer_id: str
    segments: List[SegmentReference]
    target_duration: float = 60
    wedding_id: Any = ABSENT
    gaps: Any = ABSENT
    version: str = MANIFEST_VERSION

    @classmethod
    def from_dict(cls, data: dict) -> "TimeIndex":
        owner = "time index"
        return cls(
            version=_check_version(data, owner),
            videographer_id=_req(data, "videographer_id", owner),
            segments=_list_of(SegmentReference)(_req(data, "segments", owner)),
            target_duration=data.get("target_duration", 60),
            wedding_id=_opt(data, "wedding_id"),
            gaps=_opt(data, "gaps", list),
        )


# ---------------------------------------------------------------------------
# Person index
# ---------------------------------------------------------------------------


@dataclass
class PersonAppearance(Record):
    segment_id: str
    time_range: TimeRange
    frame_count: int
    confidence_avg: float
    confidence_min: float
    bbox_samples: Any = ABSENT
    thumbnail_uri: Any = ABSENT

    @classmethod
    def from_dict(cls, data: dict) -> "PersonAppearance":
        owner = "appearance"
        return cls(
            segment_id=_req(data, "segment_id", owner),
            time_range=TimeRange.from_dict(_req(data, "time_range", owner)),
            frame_count=_req(data, "frame_count", owner),
            confidence_avg=_req(data, "confidence_avg", owner),
            confidence_min=_req(data, "confidence_min", owner),
            bbox_samples=_opt(data, "bbox_samples", list),
            thumbnail_uri=_opt(data, "thumbnail_uri"),
        )


@dataclass
class PersonEntity(Record):
    person_id: str
    first_seen: Any
    last_seen: Any
    total_frames: int = 0
    total_duration_seconds: float = 0
    appearances: List[PersonAppearance] = field(default_factory=list)
    name: Any = ABSENT
    role: Any = ABSENT
    co_occurrences: Any = ABSENT

    @classmethod
    def from_dict(cls, data: dict) -> "PersonEntity":
        owner = "person entity"
        return cls(
            person_id=_req(data, "person_id", owner),
            first_seen=_req(data, "first_seen", owner),
            last_seen=_req(data, "last_seen", owner),
            total_frames=_req(data, "total_frames", owner),
            total_duration_seconds=float(_req(data, "total_duration_seconds", owner)),
            appearances=_list_of(PersonAppearance)(_req(data, "appearances", owner)),
            name=_opt(data, "name"),
            role=_opt(data, "role"),
            co_occurrences=_opt(data, "co_occurrences", dict),
        )


@dataclass
class IndexStats(Record):
    unique_entities: int = 0
    total_appearances: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "IndexStats":
        return cls(
            unique_entities=data.get("unique_entities", 0),
            total_appearances=data.get("total_appearances", 0),
        )


@dataclass
class PersonIndex(Record):
    videographer_id: str
    updated_at: str
    entities: Dict[str, PersonEntity]
    stats: IndexStats
    wedding_id: Any = ABSENT
    content_type: str = "people"
    version: str = MANIFEST_VERSION

    @classmethod
    def from_dict(cls, data: dict) -> "PersonIndex":
        owner = "person index"
        entities = _req(data, "entities", owner)
        return cls(
            version=_check_version(data, owner),
            videographer_id=_req(data, "videographer_id", owner),
            updated_at=data.get("updated_at", ""),
            entities={pid: PersonEntity.from_dict(e) for pid, e in entities.items()},
            stats=IndexStats.from_dict(data.get("stats") or {}),
            wedding_id=_opt(data, "wedding_id"),
            content_type=data.get("content_type", "people"),
        )


# ---------------------------------------------------------------------------
# Moment index
# ---------------------------------------------------------------------------


@dataclass
class MomentEntity(Record):
    moment_id: str
    name: str
    moment_type: str  # preparation | ceremony | reception_event | portrait | candid
    start_time: Any
    end_time: Any
    duration: float
    segments: List[str]
    people_featured: Any = ABSENT
    tags: Any = ABSENT
    thumbnail_uri: Any = ABSENT

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(self.start_time, self.end_time)

    @classmethod
    def from_dict(cls, data: dict) -> "MomentEntity":
        owner = "moment"
        return cls(
            moment_id=_req(data, "moment_id", owner),
            name=_req(data, "name", owner),
            moment_type=_req(data, "moment_type", owner),
            start_time=_req(data, "start_time", owner),
            end_time=_req(data, "end_time", owner),
            duration=float(_req(data, "duration", owner)),
            segments=list(_req(data, "segments", owner)),
            people_featured=_opt(data, "people_featured", list),
            tags=_opt(data, "tags", list),
            thumbnail_uri=_opt(data, "thumbnail_uri"),
        )


@dataclass
class MomentIndex(Record):
    videographer_id: str
    updated_at: str
    moments: Dict[str, MomentEntity]
    wedding_id: Any = ABSENT
    content_type: str = "moments"
    version: str = MANIFEST_VERSION

    @classmethod
    def from_dict(cls, data: dict) -> "MomentIndex":
        owner = "moment index"
        moments = _req(data, "moments", owner)
        return cls(
            version=_check_version(data, owner),
            videographer_id=_req(data, "videographer_id", owner),
            updated_at=data.get("updated_at", ""),
            moments={mid: MomentEntity.from_dict(m) for mid, m in moments.items()},
            wedding_id=_opt(data, "wedding_id"),
            content_type=data.get("content_type", "moments"),
        )


@dataclass
class MomentAngle(Record):
    videographer_id: str
    segments: List[str]
    angle: Any = ABSENT  # front | side | back | overhead
    quality: Any = ABSENT  # 4K | 1080p | 720p

    @classmethod
    def from_dict(cls, data: dict) -> "MomentAngle":
        return cls(
            videographer_id=_req(data, "videographer_id", "moment angle"),
            segments=list(_req(data, "segments", "moment angle")),
            angle=_opt(data, "angle"),
            quality=_opt(data, "quality"),
        )


@dataclass
class GlobalMomentIndex(Record):
    """Precomputed multi-angle view of one moment across sources."""

    wedding_id: str
    moment_id: str
    name: str
    moment_type: str
    start_time: Any
    end_time: Any
    duration: float
    videographers: List[MomentAngle]
    people_featured: Any = ABSENT
    tags: Any = ABSENT
    version: str = MANIFEST_VERSION

    @classmethod
    def from_dict(cls, data: dict) -> "GlobalMomentIndex":
        owner = "global moment index"
        return cls(
            version=_check_version(data, owner),
            wedding_id=_req(data, "wedding_id", owner),
            moment_id=_req(data, "moment_id", owner),
            name=_req(data, "name", owner),
            moment_type=_req(data, "moment_type", owner),
            start_time=_req(data, "start_time", owner),
            end_time=_req(data, "end_time", owner),
            duration=float(_req(data, "duration", owner)),
            videographers=_list_of(MomentAngle)(_req(data, "videographers", owner)),
            people_featured=_opt(data, "people_featured", list),
            tags=_opt(data, "tags", list),
        )


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_manifest(manifest: Record, compress: bool = False) -> bytes:
    raw = json.dumps(manifest.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")
    return gzip.compress(raw) if compress else raw


def parse_manifest(data: Union[bytes, str], cls: Type[R]) -> R:
    """Decode a stored manifest; gzip payloads are detected by magic bytes."""
    try:
        if isinstance(data, (bytes, bytearray)):
            raw = bytes(data)
            if raw[:2] == GZIP_MAGIC:
                raw = gzip.decompress(raw)
            text = raw.decode("utf-8")
        else:
            text = data
        payload = json.loads(text)
    except (OSError, EOFError, zlib.error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptData(f"Cannot decode {cls.__name__}: {e}") from e
    if not isinstance(payload, dict):
        raise CorruptData(f"{cls.__name__} must be a JSON object")
    try:
        return cls.from_dict(payload)
    except CorruptData:
        raise
    except (TypeError, AttributeError, ValueError) as e:
        raise CorruptData(f"Malformed {cls.__name__}: {e}") from e


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def create_wedding_manifest(
    wedding_id: str,
    wedding_name: str,
    wedding_date: str,
    videographers: List[VideographerInfo],
    key_people: Optional[List[KeyPerson]] = None,
    location: Any = ABSENT,
    timeline: Optional[Dict[str, str]] = None,
    bloom_filter_fp_rate: float = 0.01,
    segment_duration_seconds: int = 60,
) -> WeddingManifest:
    return WeddingManifest(
        wedding_id=wedding_id,
        wedding_name=wedding_name,
        wedding_date=wedding_date,
        location=location,
        videographers=list(videographers),
        timeline=dict(timeline or {}),
        key_people=list(key_people or []),
        retention_policy=RetentionPolicy(),
        index_config=IndexSettings(
            bloom_filter_fp_rate=bloom_filter_fp_rate,
            segment_duration_seconds=segment_duration_seconds,
        ),
    )


def create_source_manifest(
    source_id: str,
    wedding_id: str,
    total_segments: int,
    total_duration_hours: float,
    unique_people_detected: Any = ABSENT,
    moments_captured: Any = ABSENT,
) -> SourceManifest:
    now = utc_now_iso()
    return SourceManifest(
        videographer_id=source_id,
        wedding_id=wedding_id,
        updated_at=now,
        indices=SourceIndices(
            time=TimeIndices(full=IndexReference(uri=keys.time_index_uri(source_id), updated_at=now)),
            content=ContentIndices(
                bloom={
                    "people": keys.people_bloom_uri(source_id),
                    "moments": keys.moments_bloom_uri(source_id),
                },
                sketches=keys.people_sketch_uri(source_id),
                people=keys.person_index_uri(source_id),
                moments=keys.moment_index_uri(source_id),
            ),
        ),
        stats=SourceStats(
            total_segments=total_segments,
            total_duration_hours=total_duration_hours,
            unique_people_detected=unique_people_detected,
            moments_captured=moments_captured,
        ),
    )


def create_segment_manifest(
    segment_id: str,
    source_id: str,
    sequence: int,
    start_time: Any,
    end_time: Any,
    duration: float,
    video_uri: str,
    thumbnail_uri: str = "",
    wedding_id: Any = ABSENT,
    moment_id: Any = ABSENT,
    byte_size: int = 0,
) -> SegmentManifest:
    return SegmentManifest(
        segment_id=segment_id,
        videographer_id=source_id,
        wedding_id=wedding_id,
        sequence=sequence,
        time_range=TimeRange(start_time, end_time),
        duration=duration,
        variants=VideoVariants(
            full=VideoVariant(
                uri=video_uri,
                codec="h264",
                resolution="1920x1080",
                bitrate=4_000_000,
                byte_size=byte_size,
            )
        ),
        thumbnail_uri=thumbnail_uri,
        moment_id=moment_id,
    )
