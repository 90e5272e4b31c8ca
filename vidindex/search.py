"""
Query orchestrator: answers "where does X appear" over a published wedding.

Each query is a short pipeline of scatter-gather stages over the sources
listed in the wedding manifest:

    global filter -> wedding manifest -> per-source filters -> per-source indexes

Every stage fans out one task per source on a thread pool and waits for all of
them before the next stage starts. A failure inside one source's branch only
removes that source from the answer; results are always assembled in the
manifest's source order.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Type, TypeVar

from . import keys
from .bloom import BloomFilter
from .config import query as query_cfg
from .errors import CorruptData, InvalidInput, NotFound, PartialAvailability, VidIndexError
from .indexes import find_in_range, to_instant
from .manifests import (
    ABSENT,
    GlobalMomentIndex,
    KeyPerson,
    MomentEntity,
    MomentIndex,
    PersonIndex,
    Record,
    SourceManifest,
    TimeIndex,
    TimeRange,
    VideographerInfo,
    WeddingManifest,
    parse_manifest,
)
from .playback import UrlResolver
from .sketch import CountMinSketch

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=Record)

# Errors that end one source's branch without failing the query. Stored
# records that parse but carry malformed values surface as TypeError,
# KeyError or AttributeError.
BRANCH_ERRORS = (VidIndexError, OSError, ValueError, TypeError, KeyError, AttributeError)

NOT_FOUND_MESSAGE = "Person not found in any footage"


# ---------------------------------------------------------------------------
# Result records
# ---------------------------------------------------------------------------


@dataclass
class AppearanceResult(Record):
    segment_id: str
    timestamp: Any
    duration: float
    hls_url: str
    thumbnail: Any = ABSENT
    moment: Any = ABSENT


@dataclass
class SourcePersonResults(Record):
    videographer_id: str
    videographer_name: str
    appearances: List[AppearanceResult]


@dataclass
class PersonSearchResult(Record):
    person_id: str
    results: List[SourcePersonResults]
    total_clips: int
    total_duration_seconds: float
    search_time_ms: float
    name: Any = ABSENT
    message: Any = ABSENT


@dataclass
class SegmentResult(Record):
    segment_id: str
    start: Any
    duration: float
    hls_url: str
    thumbnail: Any = ABSENT


@dataclass
class MomentAngleResult(Record):
    videographer_id: str
    videographer_name: str
    segments: List[SegmentResult]
    angle: Any = ABSENT


@dataclass
class MomentSearchResult(Record):
    moment_id: str
    name: str
    start_time: Any
    end_time: Any
    angles: List[MomentAngleResult]
    total_clips: int = 0
    total_duration_seconds: float = 0
    search_time_ms: float = 0
    moment_type: Any = ABSENT
    people_featured: Any = ABSENT
    tags: Any = ABSENT


@dataclass
class MomentSummary(Record):
    moment_id: str
    name: str
    type: str
    start_time: Any
    duration: float
    videographers: List[str] = field(default_factory=list)


@dataclass
class SourceTimelineResults(Record):
    videographer_id: str
    videographer_name: str
    segments: List[SegmentResult]


@dataclass
class TimelineSearchResult(Record):
    time_range: TimeRange
    videographers: List[SourceTimelineResults]
    total_segments: int
    total_duration: float


@dataclass
class FrequencyEstimate(Record):
    person_id: str
    estimate: int
    sources: int
    error_bound: float


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 3)


class IndexSearcher:
    """Read-only query surface over one storage client.

    Holds no per-query state, so one instance can serve concurrent callers.
    """

    def __init__(
        self,
        storage,
        url_resolver: UrlResolver,
        max_workers: Optional[int] = None,
    ):
        self.storage = storage
        self.url_resolver = url_resolver
        self.max_workers = max_workers or query_cfg.max_workers

    # -- storage helpers ---------------------------------------------------

    def _gather(self, fn: Callable[[Any], T], items: Sequence[Any]) -> List[T]:
        """Run fn over items concurrently; results keep the input order."""
        if not items:
            return []
        workers = max(1, min(self.max_workers, len(items)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(fn, items))

    def _require(self, source_id: str, key: str) -> bytes:
        data = self.storage.get(key)
        if data is None:
            raise PartialAvailability(source_id, key)
        return data

    def _read_manifest(self, key: str, cls: Type[M]) -> Optional[M]:
        data = self.storage.get(key)
        if data is None:
            return None
        return parse_manifest(data, cls)

    def _wedding(self, wedding_id: str) -> WeddingManifest:
        manifest = self._read_manifest(keys.wedding_manifest_key(wedding_id), WeddingManifest)
        if manifest is None:
            raise NotFound(f"Wedding manifest not found: {wedding_id}")
        return manifest

    def _may_contain(self, source_id: str, key: str, item: str) -> bool:
        """False only on a definite negative; a missing or unreadable filter cannot prune."""
        try:
            data = self.storage.get(key)
            if data is None:
                logger.debug("No filter at %s; cannot prune source %s", key, source_id)
                return True
            return BloomFilter.from_bytes(data).might_contain(item)
        except BRANCH_ERRORS as e:
            logger.warning("Filter check failed for source %s (%s); not pruning", source_id, e)
            return True

    def _prune(
        self,
        sources: Sequence[VideographerInfo],
        key_for: Callable[[str], str],
        item: str,
    ) -> List[VideographerInfo]:
        verdicts = self._gather(lambda info: self._may_contain(info.id, key_for(info.id), item), sources)
        kept = [info for info, keep in zip(sources, verdicts) if keep]
        logger.debug("Filters kept %d of %d sources for %r", len(kept), len(sources), item)
        return kept

    def _branch(self, fn: Callable[[VideographerInfo], T]) -> Callable[[VideographerInfo], Optional[T]]:
        def run(info: VideographerInfo) -> Optional[T]:
            try:
                return fn(info)
            except PartialAvailability as e:
                logger.info("Skipping source %s: %s", info.id, e)
            except BRANCH_ERRORS as e:
                logger.warning("Skipping source %s: %s", info.id, e)
            return None

        return run

    @staticmethod
    def _check(name: str, value: Optional[str]) -> str:
        if not value:
            raise InvalidInput(f"Missing {name} parameter")
        return value

    # -- person search -----------------------------------------------------

    def search_person(self, wedding_id: str, person_id: str) -> PersonSearchResult:
        """Every appearance of person_id across the wedding's sources."""
        started = time.perf_counter()
        self._check("wedding_id", wedding_id)
        self._check("person_id", person_id)

        global_key = keys.global_people_bloom_key(wedding_id)
        data = self.storage.get(global_key)
        if data is not None:
            try:
                global_bloom = BloomFilter.from_bytes(data)
            except CorruptData as e:
                logger.warning("Ignoring unreadable global filter %s: %s", global_key, e)
            else:
                if not global_bloom.might_contain(person_id):
                    return PersonSearchResult(
                        person_id=person_id,
                        results=[],
                        total_clips=0,
                        total_duration_seconds=0,
                        search_time_ms=_elapsed_ms(started),
                        message=NOT_FOUND_MESSAGE,
                    )

        wedding = self._wedding(wedding_id)
        candidates = self._prune(
            wedding.videographers,
            lambda sid: keys.people_bloom_key(wedding_id, sid),
            person_id,
        )

        def lookup(info: VideographerInfo):
            key = keys.person_index_key(wedding_id, info.id)
            index = parse_manifest(self._require(info.id, key), PersonIndex)
            entity = index.entities.get(person_id)
            if entity is None:
                logger.debug("Filter false positive for %r in source %s", person_id, info.id)
                return None
            appearances = [
                AppearanceResult(
                    segment_id=app.segment_id,
                    timestamp=app.time_range.start,
                    duration=max(0.0, to_instant(app.time_range.end) - to_instant(app.time_range.start)),
                    hls_url=self.url_resolver(info.id, app.segment_id),
                    thumbnail=app.thumbnail_uri,
                )
                for app in entity.appearances
            ]
            return (
                SourcePersonResults(
                    videographer_id=info.id,
                    videographer_name=info.name,
                    appearances=appearances,
                ),
                entity.total_duration_seconds,
            )

        results: List[SourcePersonResults] = []
        total_clips = 0
        total_duration = 0.0
        for found in self._gather(self._branch(lookup), candidates):
            if found is None:
                continue
            source_results, duration = found
            results.append(source_results)
            total_clips += len(source_results.appearances)
            total_duration += duration

        person = wedding.key_person(person_id)
        return PersonSearchResult(
            person_id=person_id,
            results=results,
            total_clips=total_clips,
            total_duration_seconds=total_duration,
            search_time_ms=_elapsed_ms(started),
            name=person.name if person else ABSENT,
            message=NOT_FOUND_MESSAGE if total_clips == 0 else ABSENT,
        )

    # -- moment search -----------------------------------------------------

    def _segments(
        self, source_id: str, segment_ids: Sequence[str], start: Any, duration: float, thumbnail: Any = ABSENT
    ) -> List[SegmentResult]:
        return [
            SegmentResult(
                segment_id=segment_id,
                start=start,
                duration=duration,
                hls_url=self.url_resolver(source_id, segment_id),
                thumbnail=thumbnail,
            )
            for segment_id in segment_ids
        ]

    def _from_global(
        self, wedding_id: str, descriptor: GlobalMomentIndex, started: float
    ) -> MomentSearchResult:
        names: Dict[str, str] = {}
        try:
            wedding = self._read_manifest(keys.wedding_manifest_key(wedding_id), WeddingManifest)
        except CorruptData as e:
            logger.warning("Wedding manifest unreadable, using source ids as names: %s", e)
            wedding = None
        if wedding is not None:
            names = {info.id: info.name for info in wedding.videographers}

        angles = [
            MomentAngleResult(
                videographer_id=angle.videographer_id,
                videographer_name=names.get(angle.videographer_id, angle.videographer_id),
                angle=angle.angle,
                segments=self._segments(
                    angle.videographer_id, angle.segments, descriptor.start_time, descriptor.duration
                ),
            )
            for angle in descriptor.videographers
        ]
        return MomentSearchResult(
            moment_id=descriptor.moment_id,
            name=descriptor.name,
            moment_type=descriptor.moment_type,
            start_time=descriptor.start_time,
            end_time=descriptor.end_time,
            angles=angles,
            total_clips=sum(len(a.segments) for a in angles),
            total_duration_seconds=float(descriptor.duration) * len(angles),
            search_time_ms=_elapsed_ms(started),
            people_featured=descriptor.people_featured,
            tags=descriptor.tags,
        )

    def search_moment(self, wedding_id: str, moment_id: str) -> MomentSearchResult:
        """Multi-angle view of one moment.

        A precomputed global descriptor answers directly; otherwise every
        source's moment index is scanned after filter pruning.
        """
        started = time.perf_counter()
        self._check("wedding_id", wedding_id)
        self._check("moment_id", moment_id)

        descriptor_key = keys.global_moment_key(wedding_id, moment_id)
        try:
            descriptor = self._read_manifest(descriptor_key, GlobalMomentIndex)
        except CorruptData as e:
            logger.warning("Ignoring unreadable moment descriptor %s: %s", descriptor_key, e)
            descriptor = None
        if descriptor is not None:
            return self._from_global(wedding_id, descriptor, started)

        wedding = self._wedding(wedding_id)
        candidates = self._prune(
            wedding.videographers,
            lambda sid: keys.moments_bloom_key(wedding_id, sid),
            moment_id,
        )

        def lookup(info: VideographerInfo):
            key = keys.moment_index_key(wedding_id, info.id)
            index = parse_manifest(self._require(info.id, key), MomentIndex)
            moment = index.moments.get(moment_id)
            if moment is None:
                return None
            # malformed bounds drop this source before aggregation
            to_instant(moment.start_time)
            to_instant(moment.end_time)
            angle = MomentAngleResult(
                videographer_id=info.id,
                videographer_name=info.name,
                segments=self._segments(
                    info.id, moment.segments, moment.start_time, moment.duration, moment.thumbnail_uri
                ),
            )
            return angle, moment

        found = [hit for hit in self._gather(self._branch(lookup), candidates) if hit is not None]
        if not found:
            raise NotFound(f"Moment not found: {moment_id}")

        angles = [angle for angle, _ in found]
        moments: List[MomentEntity] = [moment for _, moment in found]
        first = moments[0]
        return MomentSearchResult(
            moment_id=moment_id,
            name=first.name,
            moment_type=first.moment_type,
            start_time=min((m.start_time for m in moments), key=to_instant),
            end_time=max((m.end_time for m in moments), key=to_instant),
            angles=angles,
            total_clips=sum(len(a.segments) for a in angles),
            total_duration_seconds=sum(float(m.duration) for m in moments),
            search_time_ms=_elapsed_ms(started),
            people_featured=first.people_featured,
            tags=first.tags,
        )

    # -- listings ----------------------------------------------------------

    def list_people(self, wedding_id: str) -> List[KeyPerson]:
        self._check("wedding_id", wedding_id)
        return list(self._wedding(wedding_id).key_people)

    def list_moments(self, wedding_id: str, moment_type: Optional[str] = None) -> List[MomentSummary]:
        """Moments across all sources, one entry per id, ordered by start time."""
        self._check("wedding_id", wedding_id)
        wedding = self._wedding(wedding_id)

        def fetch(info: VideographerInfo) -> MomentIndex:
            key = keys.moment_index_key(wedding_id, info.id)
            index = parse_manifest(self._require(info.id, key), MomentIndex)
            for moment in index.moments.values():
                to_instant(moment.start_time)
            return index

        summaries: Dict[str, MomentSummary] = {}
        for info, index in zip(wedding.videographers, self._gather(self._branch(fetch), wedding.videographers)):
            if index is None:
                continue
            for moment_id, moment in index.moments.items():
                if moment_type and moment.moment_type != moment_type:
                    continue
                summary = summaries.get(moment_id)
                if summary is None:
                    summaries[moment_id] = MomentSummary(
                        moment_id=moment_id,
                        name=moment.name,
                        type=moment.moment_type,
                        start_time=moment.start_time,
                        duration=moment.duration,
                        videographers=[info.id],
                    )
                elif info.id not in summary.videographers:
                    summary.videographers.append(info.id)

        return sorted(summaries.values(), key=lambda s: to_instant(s.start_time))

    # -- timeline ----------------------------------------------------------

    def search_timeline(self, wedding_id: str, start: Any, end: Any) -> TimelineSearchResult:
        """Segments from every source overlapping [start, end)."""
        self._check("wedding_id", wedding_id)
        if start in (None, "") or end in (None, ""):
            raise InvalidInput("Missing start or end parameter")
        try:
            lo, hi = to_instant(start), to_instant(end)
        except (TypeError, ValueError) as e:
            raise InvalidInput(str(e)) from e
        if hi < lo:
            raise InvalidInput(f"Range end {end!r} is before start {start!r}")

        wedding = self._wedding(wedding_id)

        def scan(info: VideographerInfo) -> SourceTimelineResults:
            key = keys.time_index_key(wedding_id, info.id)
            source = self._read_manifest(keys.source_manifest_key(wedding_id, info.id), SourceManifest)
            if source is not None and source.indices.time.full:
                key = keys.resolve(wedding_id, source.indices.time.full.uri)
            index = parse_manifest(self._require(info.id, key), TimeIndex)
            segments = [
                SegmentResult(
                    segment_id=seg.id,
                    start=seg.time_range.start,
                    duration=seg.duration,
                    hls_url=self.url_resolver(info.id, seg.id),
                    thumbnail=seg.thumbnail_uri,
                )
                for seg in find_in_range(index, start, end)
            ]
            return SourceTimelineResults(videographer_id=info.id, videographer_name=info.name, segments=segments)

        per_source = [
            r for r in self._gather(self._branch(scan), wedding.videographers) if r is not None and r.segments
        ]
        return TimelineSearchResult(
            time_range=TimeRange(start, end),
            videographers=per_source,
            total_segments=sum(len(r.segments) for r in per_source),
            total_duration=sum(seg.duration for r in per_source for seg in r.segments),
        )

    # -- frequency ---------------------------------------------------------

    def estimate_person_frequency(self, wedding_id: str, person_id: str) -> FrequencyEstimate:
        """Approximate appearance count from the merged per-source sketches.

        Never below the true count; the overestimate is bounded by error_bound
        with high probability.
        """
        self._check("wedding_id", wedding_id)
        self._check("person_id", person_id)
        wedding = self._wedding(wedding_id)

        def fetch(info: VideographerInfo) -> CountMinSketch:
            key = keys.people_sketch_key(wedding_id, info.id)
            return CountMinSketch.from_bytes(self._require(info.id, key))

        merged: Optional[CountMinSketch] = None
        used = 0
        for info, sketch in zip(wedding.videographers, self._gather(self._branch(fetch), wedding.videographers)):
            if sketch is None:
                continue
            if merged is None:
                merged = sketch
            else:
                try:
                    merged = merged.merge(sketch)
                except ValueError as e:
                    logger.warning("Skipping sketch for source %s: %s", info.id, e)
                    continue
            used += 1

        if merged is None:
            return FrequencyEstimate(person_id=person_id, estimate=0, sources=0, error_bound=0.0)
        return FrequencyEstimate(
            person_id=person_id,
            estimate=merged.estimate(person_id),
            sources=used,
            error_bound=merged.error_bound(),
        )
