"""Offline index construction: catalog directory -> immutable objects in storage.

Catalog layout:

    <catalog_dir>/wedding.json
    <catalog_dir>/sources/<source_id>/segments.jsonl
    <catalog_dir>/sources/<source_id>/appearances.jsonl
    <catalog_dir>/sources/<source_id>/moments.jsonl

Missing JSONL files count as empty. The wedding manifest is written last so
readers never see it before the per-source objects it points at.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from functools import reduce
from typing import Dict, List, Optional

from tqdm import tqdm

from . import keys
from .bloom import BloomFilter
from .config import BloomConfig, SketchConfig, bloom as bloom_cfg, paths, sketch as sketch_cfg
from .hashing import hash_family_from_name
from .indexes import (
    AppearanceInput,
    SegmentInput,
    build_global_moment_indexes,
    build_moment_index,
    build_moments_bloom_filter,
    build_people_bloom_filter,
    build_people_sketch,
    build_person_index,
    build_time_index,
    filter_by_confidence,
)
from .manifests import (
    ABSENT,
    KeyPerson,
    MomentEntity,
    MomentIndex,
    PersonIndex,
    VideographerInfo,
    WeddingManifest,
    create_segment_manifest,
    create_source_manifest,
    create_wedding_manifest,
    serialize_manifest,
)
from .storage import open_storage

logger = logging.getLogger(__name__)


@dataclass
class SourceInputs:
    segments: List[SegmentInput] = field(default_factory=list)
    appearances: List[AppearanceInput] = field(default_factory=list)
    moments: List[MomentEntity] = field(default_factory=list)


@dataclass
class Catalog:
    wedding: WeddingManifest
    sources: Dict[str, SourceInputs]


@dataclass
class BuildReport:
    wedding_id: str
    sources: int = 0
    segments: int = 0
    people: int = 0
    moments: int = 0
    keys_written: List[str] = field(default_factory=list)


def _read_jsonl(path: str) -> List[dict]:
    records: List[dict] = []
    if not os.path.exists(path):
        return records
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            records.append(json.loads(line))
    return records


def _wedding_from_dict(data: dict) -> WeddingManifest:
    if "version" in data:
        return WeddingManifest.from_dict(data)
    index_config = data.get("index_config") or {}
    return create_wedding_manifest(
        wedding_id=data["wedding_id"],
        wedding_name=data.get("wedding_name", data["wedding_id"]),
        wedding_date=data.get("wedding_date", ""),
        videographers=[VideographerInfo.from_dict(v) for v in data.get("videographers", [])],
        key_people=[KeyPerson.from_dict(p) for p in data.get("key_people", [])],
        location=data.get("location", ABSENT),
        timeline=data.get("timeline"),
        bloom_filter_fp_rate=index_config.get("bloom_filter_fp_rate", bloom_cfg.fp_rate),
        segment_duration_seconds=index_config.get("segment_duration_seconds", 60),
    )


def load_catalog(catalog_dir: Optional[str] = None) -> Catalog:
    """Read wedding.json and each source's JSONL records."""
    catalog_dir = catalog_dir or paths.catalog_dir
    wedding_path = os.path.join(catalog_dir, "wedding.json")
    if not os.path.exists(wedding_path):
        raise FileNotFoundError(f"Catalog has no wedding.json: {wedding_path}")
    with open(wedding_path, "r", encoding="utf-8") as f:
        wedding = _wedding_from_dict(json.load(f))

    sources: Dict[str, SourceInputs] = {}
    for info in wedding.videographers:
        source_dir = os.path.join(catalog_dir, "sources", info.id)
        if not os.path.isdir(source_dir):
            continue
        sources[info.id] = SourceInputs(
            segments=[SegmentInput.from_dict(r) for r in _read_jsonl(os.path.join(source_dir, "segments.jsonl"))],
            appearances=[
                AppearanceInput.from_dict(r)
                for r in _read_jsonl(os.path.join(source_dir, "appearances.jsonl"))
            ],
            moments=[MomentEntity.from_dict(r) for r in _read_jsonl(os.path.join(source_dir, "moments.jsonl"))],
        )
    return Catalog(wedding=wedding, sources=sources)


def publish_wedding_index(
    catalog: Catalog,
    storage,
    bloom: BloomConfig = bloom_cfg,
    sketch: SketchConfig = sketch_cfg,
    min_confidence: Optional[float] = None,
) -> BuildReport:
    """Build every index, filter and manifest for one wedding and write it to storage.

    All per-source people filters share one size (the wedding-wide distinct
    person count) so they can be OR-merged into the global filter.
    """
    wedding = catalog.wedding
    wedding_id = wedding.wedding_id
    family = hash_family_from_name(bloom.hash_family)
    fp_rate = (
        wedding.index_config.bloom_filter_fp_rate
        if wedding.index_config is not ABSENT
        else bloom.fp_rate
    )
    report = BuildReport(wedding_id=wedding_id)

    def put(key: str, data: bytes) -> None:
        storage.put(key, data)
        report.keys_written.append(key)

    person_indexes: Dict[str, PersonIndex] = {}
    for info in wedding.videographers:
        inputs = catalog.sources.get(info.id)
        if inputs is None:
            continue
        index = build_person_index(info.id, inputs.appearances, wedding_id=wedding_id)
        if min_confidence is not None:
            index = filter_by_confidence(index, min_confidence)
        person_indexes[info.id] = index

    all_people = {pid for index in person_indexes.values() for pid in index.entities}
    expected_people = max(len(all_people), bloom.min_expected_items)
    report.people = len(all_people)

    people_blooms: List[BloomFilter] = []
    moment_indexes: List[MomentIndex] = []

    for info in tqdm(wedding.videographers, desc="Sources", unit="source"):
        inputs = catalog.sources.get(info.id)
        if inputs is None:
            tqdm.write(f"Skip (no catalog data): {info.id}")
            continue

        time_index = build_time_index(
            info.id,
            inputs.segments,
            wedding_id=wedding_id,
            target_duration=(
                wedding.index_config.segment_duration_seconds
                if wedding.index_config is not ABSENT
                else 60
            ),
        )
        person_index = person_indexes[info.id]
        moment_index = build_moment_index(info.id, inputs.moments, wedding_id=wedding_id)
        moment_indexes.append(moment_index)

        people_bloom = build_people_bloom_filter(
            person_index, fp_rate, expected_items=expected_people, hash_family=family
        )
        people_blooms.append(people_bloom)
        moments_bloom = build_moments_bloom_filter(
            moment_index, fp_rate, hash_family=family, min_expected_items=bloom.min_expected_items
        )
        people_sketch = build_people_sketch(person_index, sketch.width, sketch.depth, family)

        put(keys.time_index_key(wedding_id, info.id), serialize_manifest(time_index, compress=True))
        put(keys.person_index_key(wedding_id, info.id), serialize_manifest(person_index, compress=True))
        put(keys.moment_index_key(wedding_id, info.id), serialize_manifest(moment_index, compress=True))
        put(keys.people_bloom_key(wedding_id, info.id), people_bloom.to_bytes())
        put(keys.moments_bloom_key(wedding_id, info.id), moments_bloom.to_bytes())
        put(keys.people_sketch_key(wedding_id, info.id), people_sketch.to_bytes())

        for seg in time_index.segments:
            segment_manifest = create_segment_manifest(
                segment_id=seg.id,
                source_id=info.id,
                sequence=seg.sequence,
                start_time=seg.time_range.start,
                end_time=seg.time_range.end,
                duration=seg.duration,
                video_uri=seg.uri,
                thumbnail_uri=seg.thumbnail_uri or "",
                wedding_id=wedding_id,
                moment_id=seg.moment_id,
                byte_size=seg.byte_size or 0,
            )
            put(keys.segment_manifest_key(wedding_id, info.id, seg.id), serialize_manifest(segment_manifest))

        source_manifest = create_source_manifest(
            source_id=info.id,
            wedding_id=wedding_id,
            total_segments=len(time_index.segments),
            total_duration_hours=round(sum(s.duration for s in time_index.segments) / 3600.0, 4),
            unique_people_detected=len(person_index.entities),
            moments_captured=len(moment_index.moments),
        )
        put(keys.source_manifest_key(wedding_id, info.id), serialize_manifest(source_manifest))

        report.sources += 1
        report.segments += len(time_index.segments)

    if people_blooms:
        global_bloom = reduce(lambda a, b: a.merge(b), people_blooms)
        put(keys.global_people_bloom_key(wedding_id), global_bloom.to_bytes())

    global_moments = build_global_moment_indexes(wedding_id, moment_indexes)
    for moment_id, descriptor in global_moments.items():
        put(keys.global_moment_key(wedding_id, moment_id), serialize_manifest(descriptor))
    report.moments = len(global_moments)

    put(keys.wedding_manifest_key(wedding_id), serialize_manifest(wedding))
    logger.info(
        "Published wedding %s: %d sources, %d segments, %d people, %d moments, %d objects",
        wedding_id,
        report.sources,
        report.segments,
        report.people,
        report.moments,
        len(report.keys_written),
    )
    return report


def build_wedding_index(
    catalog_dir: Optional[str] = None,
    storage=None,
    bloom: BloomConfig = bloom_cfg,
    sketch: SketchConfig = sketch_cfg,
    min_confidence: Optional[float] = None,
) -> BuildReport:
    """load_catalog + publish_wedding_index into the configured storage."""
    catalog = load_catalog(catalog_dir)
    if not catalog.sources:
        raise ValueError("No source data found in catalog; expected sources/<id>/*.jsonl")
    if storage is None:
        storage = open_storage()
    return publish_wedding_index(catalog, storage, bloom, sketch, min_confidence)
