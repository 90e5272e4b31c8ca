"""
Tests for manifest serialization: optional-field states, versions, gzip detection.
"""

import gzip
import json

import pytest

from vidindex import keys
from vidindex.errors import CorruptData
from vidindex.manifests import (
    ABSENT,
    MANIFEST_VERSION,
    PersonAppearance,
    PersonEntity,
    SegmentManifest,
    SourceManifest,
    TimeIndex,
    TimeRange,
    WeddingManifest,
    create_segment_manifest,
    create_source_manifest,
    parse_manifest,
    serialize_manifest,
)


def _wedding_dict(**extra):
    data = {
        "version": "1.0",
        "wedding_id": "w1",
        "wedding_name": "Alice & Bob",
        "wedding_date": "2025-06-14",
        "videographers": [{"id": "cam-a", "name": "Main Camera", "role": "primary"}],
        "key_people": [{"id": "bride", "name": "Alice", "role": "bride"}],
        "timeline": {},
    }
    data.update(extra)
    return data


class TestOptionalFields:
    def test_absent_null_and_empty_list_survive(self):
        raw = _wedding_dict(location=None)
        raw["videographers"][0]["capabilities"] = []

        manifest = parse_manifest(json.dumps(raw), WeddingManifest)

        assert manifest.location is None
        assert manifest.retention_policy is ABSENT
        assert manifest.videographers[0].capabilities == []
        assert manifest.videographers[0].operator is ABSENT

        out = json.loads(serialize_manifest(manifest))
        assert out == raw
        assert "retention_policy" not in out
        assert out["location"] is None

    def test_version_is_written_first(self):
        manifest = parse_manifest(json.dumps(_wedding_dict()), WeddingManifest)
        out = json.loads(serialize_manifest(manifest))
        assert next(iter(out)) == "version"

    def test_absent_is_falsy_singleton(self):
        assert not ABSENT
        assert type(ABSENT)() is ABSENT
        assert repr(ABSENT) == "ABSENT"


class TestParsing:
    def test_gzip_detected_by_magic(self):
        manifest = parse_manifest(json.dumps(_wedding_dict()), WeddingManifest)
        compressed = serialize_manifest(manifest, compress=True)
        assert compressed[:2] == b"\x1f\x8b"

        restored = parse_manifest(compressed, WeddingManifest)
        assert restored == manifest

    def test_plain_bytes(self):
        data = json.dumps(_wedding_dict()).encode("utf-8")
        assert parse_manifest(data, WeddingManifest).wedding_name == "Alice & Bob"

    def test_minor_version_accepted(self):
        assert parse_manifest(json.dumps(_wedding_dict(version="1.3")), WeddingManifest).version == "1.3"

    def test_unsupported_major_version(self):
        with pytest.raises(CorruptData):
            parse_manifest(json.dumps(_wedding_dict(version="2.0")), WeddingManifest)

    def test_missing_required_field(self):
        raw = _wedding_dict()
        del raw["videographers"]
        with pytest.raises(CorruptData, match="videographers"):
            parse_manifest(json.dumps(raw), WeddingManifest)

    @pytest.mark.parametrize(
        "payload",
        [b"{not json", b"\x1f\x8b\x08garbage", b"\xff\xfe", b"[1, 2]", b'{"version": "1.0", "videographers": 5}'],
    )
    def test_undecodable_payloads(self, payload):
        with pytest.raises(CorruptData):
            parse_manifest(payload, WeddingManifest)


class TestRecords:
    def test_person_entity_round_trip(self):
        entity = PersonEntity(
            person_id="bride",
            first_seen="2025-06-14T12:00:05Z",
            last_seen="2025-06-14T12:00:25Z",
            total_frames=600,
            total_duration_seconds=20.0,
            appearances=[
                PersonAppearance(
                    segment_id="seg-001",
                    time_range=TimeRange("2025-06-14T12:00:05Z", "2025-06-14T12:00:25Z"),
                    frame_count=600,
                    confidence_avg=0.95,
                    confidence_min=0.9,
                    bbox_samples=[],
                )
            ],
        )
        data = entity.to_dict()
        assert data["appearances"][0]["bbox_samples"] == []
        assert "thumbnail_uri" not in data["appearances"][0]
        assert PersonEntity.from_dict(data) == entity

    def test_source_manifest_points_at_standard_keys(self):
        manifest = create_source_manifest("cam-a", "w1", total_segments=3, total_duration_hours=0.05)

        assert manifest.indices.time.full.uri == keys.time_index_uri("cam-a")
        assert manifest.indices.content.bloom["people"] == keys.people_bloom_uri("cam-a")
        assert keys.resolve("w1", manifest.indices.content.people) == keys.person_index_key("w1", "cam-a")
        assert manifest.stats.unique_people_detected is ABSENT

        restored = parse_manifest(serialize_manifest(manifest), SourceManifest)
        assert restored == manifest

    def test_segment_manifest(self):
        manifest = create_segment_manifest(
            segment_id="seg-001",
            source_id="cam-a",
            sequence=1,
            start_time="2025-06-14T12:00:00Z",
            end_time="2025-06-14T12:01:00Z",
            duration=60.0,
            video_uri="segments/seg-001.mp4",
        )
        data = json.loads(serialize_manifest(manifest))
        assert data["variants"]["full"]["uri"] == "segments/seg-001.mp4"
        assert "low" not in data["variants"]
        assert "moment_id" not in data
        assert parse_manifest(json.dumps(data), SegmentManifest) == manifest

    def test_time_index_defaults(self):
        index = parse_manifest(
            gzip.compress(json.dumps({"version": MANIFEST_VERSION, "videographer_id": "cam-a", "segments": []}).encode()),
            TimeIndex,
        )
        assert index.target_duration == 60
        assert index.segments == []
        assert index.gaps is ABSENT
