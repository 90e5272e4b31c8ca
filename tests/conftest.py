"""Test configuration and fixtures: a small published wedding in recording memory storage."""

import json
import os
import tempfile
import threading

# Set test environment variables before importing vidindex modules
os.environ.setdefault("VIDINDEX_DATA_DIR", tempfile.mkdtemp())
os.environ.setdefault("VIDINDEX_STORAGE", "local")

import pytest

from vidindex.builder import Catalog, SourceInputs, publish_wedding_index
from vidindex.indexes import AppearanceInput, SegmentInput
from vidindex.manifests import ABSENT, KeyPerson, MomentEntity, VideographerInfo, create_wedding_manifest
from vidindex.playback import TemplateUrlResolver
from vidindex.search import IndexSearcher
from vidindex.storage import MemoryStorage

WEDDING_ID = "w1"


def ts(clock: str) -> str:
    """Wedding-day timestamp for an HH:MM:SS clock time."""
    return f"2025-06-14T{clock}Z"


class RecordingStorage(MemoryStorage):
    """MemoryStorage that remembers every key read, in order."""

    def __init__(self, objects=None):
        super().__init__(objects)
        self.reads = []
        self._reads_lock = threading.Lock()

    def get(self, key):
        with self._reads_lock:
            self.reads.append(key)
        return super().get(key)

    def exists(self, key):
        with self._reads_lock:
            self.reads.append(key)
        return super().exists(key)


def _segment(seg_id, sequence, start, end, **extra):
    return SegmentInput(
        id=seg_id,
        sequence=sequence,
        start_time=ts(start),
        end_time=ts(end),
        duration=60.0,
        uri=f"segments/{seg_id}.mp4",
        **extra,
    )


def _appearance(person_id, seg_id, start, end, start_offset, end_offset, frames, avg, low):
    return AppearanceInput(
        person_id=person_id,
        segment_id=seg_id,
        start_time=ts(start),
        end_time=ts(end),
        start_offset=start_offset,
        end_offset=end_offset,
        frame_count=frames,
        confidence_avg=avg,
        confidence_min=low,
    )


def make_catalog() -> Catalog:
    wedding = create_wedding_manifest(
        wedding_id=WEDDING_ID,
        wedding_name="Alice & Bob",
        wedding_date="2025-06-14",
        videographers=[
            VideographerInfo(id="cam-a", name="Main Camera", role="primary"),
            VideographerInfo(id="cam-b", name="Guest Camera", role="guest"),
            VideographerInfo(id="drone", name="Drone", role="drone"),
        ],
        key_people=[
            KeyPerson(id="bride", name="Alice", role="bride"),
            KeyPerson(id="groom", name="Bob", role="groom"),
        ],
        timeline={"ceremony": ts("12:00:00")},
    )
    cam_a = SourceInputs(
        segments=[
            # deliberately out of order; the time index sorts by sequence
            _segment("seg-003", 3, "12:02:00", "12:03:00"),
            _segment("seg-001", 1, "12:00:00", "12:01:00", has_motion=True),
            _segment("seg-002", 2, "12:01:00", "12:02:00", moment_id="first-kiss"),
        ],
        appearances=[
            _appearance("bride", "seg-001", "12:00:05", "12:00:25", 5, 25, 600, 0.95, 0.90),
            _appearance("bride", "seg-002", "12:01:10", "12:01:20", 10, 20, 300, 0.80, 0.70),
            _appearance("groom", "seg-001", "12:00:10", "12:00:40", 10, 40, 900, 0.92, 0.88),
        ],
        moments=[
            MomentEntity(
                moment_id="first-kiss",
                name="First Kiss",
                moment_type="ceremony",
                start_time=ts("12:01:05"),
                end_time=ts("12:01:35"),
                duration=30.0,
                segments=["seg-002"],
                people_featured=["bride", "groom"],
                tags=["kiss"],
            )
        ],
    )
    cam_b = SourceInputs(
        segments=[
            _segment("seg-101", 1, "12:00:30", "12:01:30", thumbnail_uri="thumbs/seg-101.jpg"),
            _segment("seg-102", 2, "12:01:30", "12:02:30"),
        ],
        appearances=[
            _appearance("bride", "seg-101", "12:00:40", "12:00:50", 10, 20, 300, 0.90, 0.85),
            _appearance("guest-7", "seg-102", "12:01:40", "12:01:45", 10, 15, 150, 0.75, 0.60),
        ],
        moments=[
            MomentEntity(
                moment_id="first-kiss",
                name="First Kiss",
                moment_type="ceremony",
                start_time=ts("12:01:00"),
                end_time=ts("12:01:30"),
                duration=30.0,
                segments=["seg-101"],
                tags=["kiss", "ceremony"],
            ),
            MomentEntity(
                moment_id="cake-cutting",
                name="Cake Cutting",
                moment_type="reception_event",
                start_time=ts("12:02:00"),
                end_time=ts("12:02:20"),
                duration=20.0,
                segments=["seg-102"],
            ),
        ],
    )
    # drone is listed in the wedding but never delivered footage
    return Catalog(wedding=wedding, sources={"cam-a": cam_a, "cam-b": cam_b})


@pytest.fixture
def catalog():
    return make_catalog()


@pytest.fixture
def published(catalog):
    """RecordingStorage holding the published sample wedding, with reads cleared."""
    storage = RecordingStorage()
    publish_wedding_index(catalog, storage)
    storage.reads.clear()
    return storage


@pytest.fixture
def searcher(published):
    return IndexSearcher(published, TemplateUrlResolver(WEDDING_ID), max_workers=4)


@pytest.fixture
def catalog_dir(tmp_path):
    """The sample wedding written out as a catalog directory."""
    catalog = make_catalog()
    wedding = catalog.wedding
    (tmp_path / "wedding.json").write_text(
        json.dumps(
            {
                "wedding_id": wedding.wedding_id,
                "wedding_name": wedding.wedding_name,
                "wedding_date": wedding.wedding_date,
                "videographers": [v.to_dict() for v in wedding.videographers],
                "key_people": [p.to_dict() for p in wedding.key_people],
                "timeline": wedding.timeline,
            }
        )
    )
    for source_id, inputs in catalog.sources.items():
        source_dir = tmp_path / "sources" / source_id
        source_dir.mkdir(parents=True)
        with open(source_dir / "segments.jsonl", "w") as f:
            for seg in inputs.segments:
                record = {k: v for k, v in vars(seg).items() if v is not ABSENT}
                f.write(json.dumps(record) + "\n")
        with open(source_dir / "appearances.jsonl", "w") as f:
            for app in inputs.appearances:
                record = {k: v for k, v in vars(app).items() if v is not ABSENT}
                f.write(json.dumps(record) + "\n\n")
        # moments.jsonl left out for cam-a: missing files count as empty
        if source_id == "cam-b":
            with open(source_dir / "moments.jsonl", "w") as f:
                for moment in inputs.moments:
                    f.write(json.dumps(moment.to_dict()) + "\n")
    return tmp_path
