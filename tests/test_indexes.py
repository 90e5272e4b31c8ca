"""
Tests for time / person / moment index construction and lookups.
"""

from datetime import datetime, timezone

import pytest

from vidindex.indexes import (
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
    find_in_range,
    find_people_in_segment,
    find_person_segments,
    merge_person_indexes,
    to_instant,
    top_people,
)
from vidindex.manifests import ABSENT, MomentEntity

from conftest import make_catalog, ts


def _appearance(person_id, segment_id, start, end, frames=30, avg=0.9):
    return AppearanceInput(
        person_id=person_id,
        segment_id=segment_id,
        start_time=start,
        end_time=end,
        start_offset=0.0,
        end_offset=5.0,
        frame_count=frames,
        confidence_avg=avg,
        confidence_min=avg - 0.1,
    )


def _moment(moment_id, start, end, segments, **extra):
    return MomentEntity(
        moment_id=moment_id,
        name=moment_id.replace("-", " ").title(),
        moment_type="ceremony",
        start_time=start,
        end_time=end,
        duration=to_instant(end) - to_instant(start),
        segments=segments,
        **extra,
    )


class TestToInstant:
    def test_iso_forms_agree(self):
        assert to_instant("2025-06-14T12:00:00Z") == to_instant("2025-06-14T12:00:00+00:00")
        assert to_instant("2025-06-14T12:00:00") == to_instant("2025-06-14T12:00:00Z")
        assert to_instant("2025-06-14T14:00:00+02:00") == to_instant("2025-06-14T12:00:00Z")

    def test_datetime_and_numbers(self):
        dt = datetime(2025, 6, 14, 12, tzinfo=timezone.utc)
        assert to_instant(dt) == dt.timestamp()
        assert to_instant(10) == 10.0

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_instant("noon")
        with pytest.raises(TypeError):
            to_instant(None)


class TestTimeIndex:
    def test_sorted_by_sequence(self):
        index = build_time_index("cam-a", make_catalog().sources["cam-a"].segments, wedding_id="w1")
        assert [s.id for s in index.segments] == ["seg-001", "seg-002", "seg-003"]
        assert index.segments[0].has_motion
        assert index.segments[1].moment_id == "first-kiss"
        assert index.segments[0].moment_id is ABSENT

    def test_face_count_becomes_detection_summary(self):
        seg = SegmentInput("s1", 1, 0, 10, 10.0, "s1.mp4", face_count=3)
        index = build_time_index("cam-a", [seg])
        assert index.segments[0].detection_summary == {"faces": 3}

    def test_boundary_exclusivity(self):
        index = build_time_index(
            "cam-a",
            [SegmentInput("s1", 1, 0, 10, 10.0, "s1.mp4"), SegmentInput("s2", 2, 10, 20, 10.0, "s2.mp4")],
        )
        assert [s.id for s in find_in_range(index, 10, 20)] == ["s2"]
        assert [s.id for s in find_in_range(index, 0, 10)] == ["s1"]
        assert [s.id for s in find_in_range(index, 9, 11)] == ["s1", "s2"]
        assert find_in_range(index, 20, 30) == []

    def test_boundary_exclusivity_with_timestamps(self):
        index = build_time_index("cam-a", make_catalog().sources["cam-a"].segments)
        found = find_in_range(index, ts("12:01:00"), ts("12:02:00"))
        assert [s.id for s in found] == ["seg-002"]

    def test_point_window_and_reversed_window(self):
        index = build_time_index("cam-a", [SegmentInput("s1", 1, 0, 10, 10.0, "s1.mp4")])
        assert [s.id for s in find_in_range(index, 5, 5)] == ["s1"]
        assert find_in_range(index, 10, 10) == []
        with pytest.raises(ValueError):
            find_in_range(index, 10, 0)


class TestPersonIndex:
    def test_build_aggregates_per_person(self):
        index = build_person_index("cam-a", make_catalog().sources["cam-a"].appearances, wedding_id="w1")

        bride = index.entities["bride"]
        assert len(bride.appearances) == 2
        assert bride.total_frames == 900
        assert bride.total_duration_seconds == pytest.approx(30.0)
        assert bride.first_seen == ts("12:00:05")
        assert bride.last_seen == ts("12:01:20")
        assert index.stats.unique_entities == 2
        assert index.stats.total_appearances == 3

    def test_first_and_last_seen_use_instants_not_strings(self):
        index = build_person_index(
            "cam-a",
            [
                _appearance("p", "s2", "2025-06-14T14:00:00+02:00", "2025-06-14T14:00:05+02:00"),
                _appearance("p", "s1", "2025-06-14T11:59:00Z", "2025-06-14T11:59:05Z"),
            ],
        )
        assert index.entities["p"].first_seen == "2025-06-14T11:59:00Z"
        assert index.entities["p"].last_seen == "2025-06-14T14:00:05+02:00"

    def test_merge_three_plus_two_appearances(self):
        left = build_person_index("cam-a", [_appearance("bride", f"a{i}", ts("12:00:00"), ts("12:00:05")) for i in range(3)])
        right = build_person_index("cam-b", [_appearance("bride", f"b{i}", ts("12:10:00"), ts("12:10:05")) for i in range(2)])

        merged = merge_person_indexes([left, right])

        assert merged.videographer_id == "global"
        assert len(merged.entities["bride"].appearances) == 5
        assert merged.stats.total_appearances == 5
        assert merged.stats.unique_entities == 1
        assert merged.entities["bride"].total_frames == 150
        assert merged.entities["bride"].last_seen == ts("12:10:05")
        # inputs are left alone
        assert len(left.entities["bride"].appearances) == 3

    def test_merge_sums_co_occurrences(self):
        left = build_person_index("cam-a", [_appearance("bride", "a1", ts("12:00:00"), ts("12:00:05"))])
        right = build_person_index("cam-b", [_appearance("bride", "b1", ts("12:10:00"), ts("12:10:05"))])
        left.entities["bride"].co_occurrences = {"groom": 3}
        right.entities["bride"].co_occurrences = {"groom": 2, "officiant": 1}

        merged = merge_person_indexes([left, right])

        assert merged.entities["bride"].co_occurrences == {"groom": 5, "officiant": 1}
        assert left.entities["bride"].co_occurrences == {"groom": 3}

    def test_merge_without_co_occurrences_leaves_field_absent(self):
        index = build_person_index("cam-a", [_appearance("bride", "a1", ts("12:00:00"), ts("12:00:05"))])
        merged = merge_person_indexes([index])
        assert merged.entities["bride"].co_occurrences is ABSENT

    def test_merge_requires_input(self):
        with pytest.raises(ValueError):
            merge_person_indexes([])

    def test_filter_by_confidence(self):
        index = build_person_index(
            "cam-a",
            [
                _appearance("bride", "s1", ts("12:00:00"), ts("12:00:05"), frames=120, avg=0.95),
                _appearance("bride", "s2", ts("12:01:00"), ts("12:01:05"), frames=45, avg=0.80),
                _appearance("guest", "s2", ts("12:01:00"), ts("12:01:05"), frames=10, avg=0.50),
            ],
        )

        filtered = filter_by_confidence(index, 0.9)

        bride = filtered.entities["bride"]
        assert len(bride.appearances) == 1
        assert bride.total_frames == 120
        assert "guest" not in filtered.entities
        assert filtered.stats.unique_entities == 1
        assert filtered.stats.total_appearances == 1
        assert len(index.entities["bride"].appearances) == 2

    def test_lookups(self):
        index = build_person_index("cam-a", make_catalog().sources["cam-a"].appearances)
        assert find_person_segments(index, "bride") == ["seg-001", "seg-002"]
        assert find_person_segments(index, "nobody") == []
        assert sorted(find_people_in_segment(index, "seg-001")) == ["bride", "groom"]
        assert top_people(index, 1) == [("bride", 2)]


class TestMomentIndexes:
    def test_global_moments_merge_sources_in_order(self):
        first = build_moment_index(
            "cam-a", [_moment("first-kiss", ts("12:01:05"), ts("12:01:35"), ["a2"], tags=["kiss"])], wedding_id="w1"
        )
        second = build_moment_index(
            "cam-b", [_moment("first-kiss", ts("12:01:00"), ts("12:01:30"), ["b1"], tags=["kiss", "vows"])]
        )

        descriptors = build_global_moment_indexes("w1", [first, second])

        kiss = descriptors["first-kiss"]
        assert [a.videographer_id for a in kiss.videographers] == ["cam-a", "cam-b"]
        assert kiss.start_time == ts("12:01:00")
        assert kiss.end_time == ts("12:01:35")
        assert kiss.tags == ["kiss", "vows"]
        assert kiss.people_featured is ABSENT

    def test_moments_bloom_covers_ids_and_tags(self):
        index = build_moment_index("cam-b", make_catalog().sources["cam-b"].moments)
        bf = build_moments_bloom_filter(index)
        for item in ["first-kiss", "cake-cutting", "kiss", "ceremony"]:
            assert bf.might_contain(item)


class TestFiltersAndSketches:
    def test_people_bloom_sizes_match_for_merge(self):
        catalog = make_catalog()
        a = build_person_index("cam-a", catalog.sources["cam-a"].appearances)
        b = build_person_index("cam-b", catalog.sources["cam-b"].appearances)

        bloom_a = build_people_bloom_filter(a, expected_items=100)
        bloom_b = build_people_bloom_filter(b, expected_items=100)

        merged = bloom_a.merge(bloom_b)
        for person in ["bride", "groom", "guest-7"]:
            assert merged.might_contain(person)

    def test_people_bloom_floor(self):
        index = build_person_index("cam-a", [])
        assert build_people_bloom_filter(index).size_bits == build_people_bloom_filter(index, expected_items=100).size_bits

    def test_people_sketch_counts_appearances(self):
        index = build_person_index("cam-a", make_catalog().sources["cam-a"].appearances)
        sketch = build_people_sketch(index)
        assert sketch.estimate("bride") >= 2
        assert sketch.estimate("groom") >= 1
        assert sketch.total_count == 3
