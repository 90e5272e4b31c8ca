import argparse
import logging

from vidindex.builder import build_wedding_index
from vidindex.config import bloom as bloom_cfg, ensure_directories, paths, sketch as sketch_cfg
from vidindex.storage import LocalStorage


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Build video indexes, filters and manifests from a catalog directory."
    )
    parser.add_argument(
        "--catalog-dir",
        type=str,
        default=paths.catalog_dir,
        help=f"Directory with wedding.json and sources/ (default: {paths.catalog_dir})",
    )
    parser.add_argument(
        "--store-dir",
        type=str,
        default=paths.store_dir,
        help=f"Directory to publish objects into (default: {paths.store_dir})",
    )
    parser.add_argument(
        "--double-hash",
        action="store_true",
        help="Write filters with double hashing; readers that ignore the header tag cannot read them",
    )

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    ensure_directories()

    # Apply CLI override for the hash family.
    if args.double_hash:
        bloom_cfg.hash_family = "double"

    report = build_wedding_index(
        catalog_dir=args.catalog_dir,
        storage=LocalStorage(args.store_dir),
        bloom=bloom_cfg,
        sketch=sketch_cfg,
    )

    print("Index built successfully.")
    print(f"Wedding:  {report.wedding_id}")
    print(f"Sources:  {report.sources}")
    print(f"Objects:  {len(report.keys_written)} under {args.store_dir}")


if __name__ == "__main__":
    main()
