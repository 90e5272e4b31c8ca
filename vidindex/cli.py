import argparse
import json
import logging
import os
import sys
from typing import Optional

from . import config
from .bloom import BloomFilter
from .builder import build_wedding_index
from .errors import VidIndexError
from .playback import TemplateUrlResolver
from .search import IndexSearcher
from .sketch import MAGIC_NUMBER as SKETCH_MAGIC, CountMinSketch
from .storage import open_storage


def _searcher(args: argparse.Namespace) -> IndexSearcher:
    storage = open_storage(root=args.store_dir)
    return IndexSearcher(
        storage,
        TemplateUrlResolver(args.wedding_id),
        max_workers=args.max_workers,
    )


def _dump(record) -> None:
    print(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))


def cmd_build_index(args: argparse.Namespace) -> None:
    catalog_dir = args.catalog_dir or config.paths.catalog_dir
    store_dir = args.store_dir or config.paths.store_dir
    if not args.store_dir:
        config.ensure_directories()

    print(f"Catalog dir: {catalog_dir}")
    print(f"Store dir: {store_dir}")

    if args.fp_rate is not None:
        config.bloom.fp_rate = args.fp_rate
    if args.hash_family:
        config.bloom.hash_family = args.hash_family

    report = build_wedding_index(
        catalog_dir=catalog_dir,
        storage=open_storage(root=store_dir),
        bloom=config.bloom,
        sketch=config.sketch,
        min_confidence=args.min_confidence,
    )
    print(f"Wedding: {report.wedding_id}")
    print(f"Sources indexed: {report.sources}")
    print(f"Segments: {report.segments}, people: {report.people}, moments: {report.moments}")
    print(f"Objects written: {len(report.keys_written)}")


def cmd_search_person(args: argparse.Namespace) -> None:
    result = _searcher(args).search_person(args.wedding_id, args.person_id)
    if args.json:
        _dump(result)
        return
    if result.total_clips == 0:
        print(result.message or "No results found.")
        return

    label = result.name or result.person_id
    print(
        f"{label}: {result.total_clips} clips, "
        f"{result.total_duration_seconds:.1f}s total ({result.search_time_ms:.1f} ms)"
    )
    for source in result.results:
        print(f"[{source.videographer_name}]")
        for i, app in enumerate(source.appearances, start=1):
            print(f"  {i:02d}. {app.timestamp}  {app.duration:.1f}s  segment={app.segment_id}  {app.hls_url}")


def cmd_search_moment(args: argparse.Namespace) -> None:
    result = _searcher(args).search_moment(args.wedding_id, args.moment_id)
    if args.json:
        _dump(result)
        return
    print(f"{result.name} ({result.moment_id}): {result.start_time} -> {result.end_time}")
    for angle in result.angles:
        suffix = f" [{angle.angle}]" if angle.angle else ""
        print(f"[{angle.videographer_name}]{suffix}")
        for seg in angle.segments:
            print(f"  segment={seg.segment_id}  {seg.hls_url}")


def cmd_search_time(args: argparse.Namespace) -> None:
    result = _searcher(args).search_timeline(args.wedding_id, args.start, args.end)
    if args.json:
        _dump(result)
        return
    if not result.total_segments:
        print("No segments in range.")
        return
    print(f"{result.total_segments} segments, {result.total_duration:.1f}s")
    for source in result.videographers:
        print(f"[{source.videographer_name}]")
        for seg in source.segments:
            print(f"  {seg.start}  {seg.duration:.1f}s  segment={seg.segment_id}")


def cmd_list_people(args: argparse.Namespace) -> None:
    people = _searcher(args).list_people(args.wedding_id)
    if not people:
        print("No key people listed.")
        return
    for person in people:
        print(f"{person.id}\t{person.name}\t{person.role}")


def cmd_list_moments(args: argparse.Namespace) -> None:
    moments = _searcher(args).list_moments(args.wedding_id, args.type)
    if not moments:
        print("No moments found.")
        return
    for m in moments:
        print(f"{m.start_time}  {m.moment_id}\t{m.name}\t{m.type}\t{', '.join(m.videographers)}")


def cmd_frequency(args: argparse.Namespace) -> None:
    result = _searcher(args).estimate_person_frequency(args.wedding_id, args.person_id)
    print(
        f"{result.person_id}: ~{result.estimate} appearances "
        f"(from {result.sources} sources, overestimate <= {result.error_bound:.2f})"
    )


def cmd_inspect_filter(args: argparse.Namespace) -> None:
    if os.path.exists(args.target):
        with open(args.target, "rb") as f:
            data = f.read()
    else:
        data = open_storage(root=args.store_dir).get(args.target)
        if data is None:
            raise FileNotFoundError(f"No file or storage object: {args.target}")

    magic = int.from_bytes(data[:4], "little")
    if magic == SKETCH_MAGIC:
        sketch = CountMinSketch.from_bytes(data)
        print(repr(sketch))
        meta = sketch.metadata()
        if args.item:
            meta["estimate"] = sketch.estimate(args.item)
    else:
        # unknown magic is reported by BloomFilter.from_bytes
        bf = BloomFilter.from_bytes(data)
        print(repr(bf))
        meta = bf.metadata()
        meta["estimated_fp_rate"] = round(bf.estimated_false_positive_rate(), 6)
        if args.item:
            meta["might_contain"] = bf.might_contain(args.item)
    meta["magic"] = f"0x{meta['magic']:08x}"
    print(json.dumps(meta, indent=2))


def _add_query_options(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--wedding-id",
        type=str,
        default=config.query.default_wedding_id,
        help=f"Wedding to query (default: {config.query.default_wedding_id})",
    )
    p.add_argument(
        "--store-dir",
        type=str,
        default=None,
        help="Local storage root (default: config.paths.store_dir)",
    )
    p.add_argument(
        "--max-workers",
        type=int,
        default=None,
        help="Concurrent storage reads per stage (default: config.query.max_workers)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Multi-source video content index CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # build-index
    p_build = subparsers.add_parser(
        "build-index", help="Build indexes, filters and manifests from a catalog directory"
    )
    p_build.add_argument(
        "--catalog-dir",
        type=str,
        default=None,
        help="Directory with wedding.json and sources/<id>/*.jsonl (default: config.paths.catalog_dir)",
    )
    p_build.add_argument(
        "--store-dir",
        type=str,
        default=None,
        help="Local storage root to publish into (default: config.paths.store_dir)",
    )
    p_build.add_argument(
        "--fp-rate",
        type=float,
        default=None,
        help="Bloom filter false positive rate (default: config.bloom.fp_rate)",
    )
    p_build.add_argument(
        "--hash-family",
        choices=["double", "legacy"],
        default=None,
        help="Hash family for new filters (default: config.bloom.hash_family)",
    )
    p_build.add_argument(
        "--min-confidence",
        type=float,
        default=None,
        help="Drop appearances whose average confidence is below this value",
    )
    p_build.set_defaults(func=cmd_build_index)

    # search-person
    p_person = subparsers.add_parser("search-person", help="Find every appearance of a person")
    p_person.add_argument("--person-id", type=str, required=True, help="Person identifier")
    p_person.add_argument("--json", action="store_true", help="Print the raw JSON result")
    _add_query_options(p_person)
    p_person.set_defaults(func=cmd_search_person)

    # search-moment
    p_moment = subparsers.add_parser("search-moment", help="Multi-angle view of a moment")
    p_moment.add_argument("--moment-id", type=str, required=True, help="Moment identifier")
    p_moment.add_argument("--json", action="store_true", help="Print the raw JSON result")
    _add_query_options(p_moment)
    p_moment.set_defaults(func=cmd_search_moment)

    # search-time
    p_time = subparsers.add_parser("search-time", help="Segments overlapping a time window")
    p_time.add_argument("--start", type=str, required=True, help="Window start (ISO-8601)")
    p_time.add_argument("--end", type=str, required=True, help="Window end, exclusive (ISO-8601)")
    p_time.add_argument("--json", action="store_true", help="Print the raw JSON result")
    _add_query_options(p_time)
    p_time.set_defaults(func=cmd_search_time)

    # list-people
    p_people = subparsers.add_parser("list-people", help="Key people of a wedding")
    _add_query_options(p_people)
    p_people.set_defaults(func=cmd_list_people)

    # list-moments
    p_moments = subparsers.add_parser("list-moments", help="All moments, ordered by start time")
    p_moments.add_argument("--type", type=str, default=None, help="Only moments of this type")
    _add_query_options(p_moments)
    p_moments.set_defaults(func=cmd_list_moments)

    # frequency
    p_freq = subparsers.add_parser("frequency", help="Approximate appearance count for a person")
    p_freq.add_argument("--person-id", type=str, required=True, help="Person identifier")
    _add_query_options(p_freq)
    p_freq.set_defaults(func=cmd_frequency)

    # inspect-filter
    p_inspect = subparsers.add_parser(
        "inspect-filter", help="Print the header of a stored bloom filter or count-min sketch"
    )
    p_inspect.add_argument("target", type=str, help="File path or storage key")
    p_inspect.add_argument("--item", type=str, default=None, help="Also test/estimate this item")
    p_inspect.add_argument(
        "--store-dir",
        type=str,
        default=None,
        help="Local storage root for storage keys (default: config.paths.store_dir)",
    )
    p_inspect.set_defaults(func=cmd_inspect_filter)

    return parser


def main(argv: Optional[list] = None) -> int:
    logging.basicConfig(
        level=os.environ.get("VIDINDEX_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        args.func(args)
    except (VidIndexError, FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
