import os
from dataclasses import dataclass


BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


@dataclass
class PathConfig:
    data_dir: str = os.environ.get("VIDINDEX_DATA_DIR", os.path.join(BASE_DIR, "data"))
    catalog_dir: str = os.path.join(data_dir, "catalog")
    store_dir: str = os.environ.get("VIDINDEX_STORE_DIR", os.path.join(data_dir, "store"))


@dataclass
class BloomConfig:
    fp_rate: float = float(os.environ.get("VIDINDEX_BLOOM_FP_RATE", "0.01"))
    min_expected_items: int = 100  # floor used when sizing filters for tiny sources
    # "legacy" stays readable by readers that ignore the header tag; "double" must be chosen explicitly
    hash_family: str = os.environ.get("VIDINDEX_HASH_FAMILY", "legacy")


@dataclass
class SketchConfig:
    width: int = 10000
    depth: int = 5


@dataclass(frozen=True)
class StorageConfig:
    # "local" reads a directory tree under paths.store_dir, "http" a public bucket URL
    backend: str = os.environ.get("VIDINDEX_STORAGE", "local")
    base_url: str = os.environ.get("VIDINDEX_STORAGE_URL", "")
    timeout: float = float(os.environ.get("VIDINDEX_STORAGE_TIMEOUT", "30"))
    retries: int = 3


@dataclass
class QueryConfig:
    max_workers: int = int(os.environ.get("VIDINDEX_MAX_WORKERS", "8"))
    default_wedding_id: str = os.environ.get("VIDINDEX_DEFAULT_WEDDING", "default")


@dataclass
class PlaybackConfig:
    url_template: str = os.environ.get(
        "VIDINDEX_PLAYBACK_TEMPLATE",
        "/api/hls/{wedding_id}/videographers/{source_id}/segments/{segment_id}/playlist.m3u8",
    )


paths = PathConfig()
bloom = BloomConfig()
sketch = SketchConfig()
storage = StorageConfig()
query = QueryConfig()
playback = PlaybackConfig()


def ensure_directories() -> None:
    """Ensure that expected data directories exist."""
    os.makedirs(paths.catalog_dir, exist_ok=True)
    os.makedirs(paths.store_dir, exist_ok=True)
