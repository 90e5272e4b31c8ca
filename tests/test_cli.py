"""
Tests for the command-line interface against a local store.
"""

import json
import os

import pytest

from vidindex import config, keys
from vidindex.cli import build_parser, main

from conftest import WEDDING_ID


@pytest.fixture
def store_dir(catalog_dir, tmp_path):
    store = tmp_path / "store"
    assert main(["build-index", "--catalog-dir", str(catalog_dir), "--store-dir", str(store)]) == 0
    return store


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_build_index_output(catalog_dir, tmp_path, capsys):
    store = tmp_path / "out"
    assert main(["build-index", "--catalog-dir", str(catalog_dir), "--store-dir", str(store)]) == 0
    out = capsys.readouterr().out
    assert "Sources indexed: 2" in out
    assert (store / keys.wedding_manifest_key(WEDDING_ID)).exists()


def test_search_person(store_dir, capsys):
    code = main(["search-person", "--person-id", "bride", "--wedding-id", WEDDING_ID, "--store-dir", str(store_dir)])
    assert code == 0
    out = capsys.readouterr().out
    assert "Alice: 3 clips" in out
    assert "[Main Camera]" in out


def test_search_person_json(store_dir, capsys):
    main(["search-person", "--person-id", "groom", "--json", "--wedding-id", WEDDING_ID, "--store-dir", str(store_dir)])
    data = json.loads(capsys.readouterr().out)
    assert data["total_clips"] == 1


def test_search_moment(store_dir, capsys):
    main(["search-moment", "--moment-id", "first-kiss", "--wedding-id", WEDDING_ID, "--store-dir", str(store_dir)])
    out = capsys.readouterr().out
    assert "First Kiss (first-kiss)" in out
    assert "[Guest Camera]" in out


def test_search_time(store_dir, capsys):
    main(
        [
            "search-time",
            "--start", "2025-06-14T12:01:00Z",
            "--end", "2025-06-14T12:02:00Z",
            "--wedding-id", WEDDING_ID,
            "--store-dir", str(store_dir),
        ]
    )
    assert "3 segments" in capsys.readouterr().out


def test_list_commands(store_dir, capsys):
    main(["list-people", "--wedding-id", WEDDING_ID, "--store-dir", str(store_dir)])
    main(["list-moments", "--wedding-id", WEDDING_ID, "--store-dir", str(store_dir)])
    out = capsys.readouterr().out
    assert "bride\tAlice\tbride" in out
    assert out.index("first-kiss") < out.index("cake-cutting")


def test_frequency(store_dir, capsys):
    main(["frequency", "--person-id", "bride", "--wedding-id", WEDDING_ID, "--store-dir", str(store_dir)])
    assert "from 2 sources" in capsys.readouterr().out


def test_inspect_filter(store_dir, capsys):
    bloom_path = store_dir / keys.people_bloom_key(WEDDING_ID, "cam-a")
    assert main(["inspect-filter", str(bloom_path), "--item", "groom"]) == 0
    out = capsys.readouterr().out
    assert "BloomFilter(" in out
    assert '"might_contain": true' in out

    sketch_key = keys.people_sketch_key(WEDDING_ID, "cam-a")
    assert main(["inspect-filter", sketch_key, "--store-dir", str(store_dir), "--item", "bride"]) == 0
    assert "CountMinSketch(" in capsys.readouterr().out


def test_errors_exit_non_zero(store_dir, capsys):
    code = main(["search-moment", "--moment-id", "nope", "--wedding-id", WEDDING_ID, "--store-dir", str(store_dir)])
    assert code == 1
    assert "Moment not found" in capsys.readouterr().err


def test_build_index_default_store_dir(catalog_dir, capsys):
    # conftest points VIDINDEX_DATA_DIR at a temporary directory
    assert main(["build-index", "--catalog-dir", str(catalog_dir)]) == 0
    assert f"Store dir: {config.paths.store_dir}" in capsys.readouterr().out
    assert os.path.exists(os.path.join(config.paths.store_dir, keys.wedding_manifest_key(WEDDING_ID)))
