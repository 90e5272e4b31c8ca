"""
HTTP query surface over a published index.
- GET /api/video/search/person?person_id&wedding_id: every appearance of a person.
- GET /api/video/search/moment?moment_id&wedding_id: multi-angle view of a moment.
- GET /api/video/search/timeline?wedding_id&start&end: segments overlapping a window.
- GET /api/video/people?wedding_id: key people.
- GET /api/video/moments?wedding_id&type: moments ordered by start time.
- GET /api/video/people/<person_id>/frequency?wedding_id: approximate appearance count.
wedding_id defaults to config.query.default_wedding_id.
"""
from __future__ import annotations

import logging

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from . import config
from .errors import CorruptData, InvalidInput, NotFound
from .playback import TemplateUrlResolver
from .search import IndexSearcher
from .storage import open_storage

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.json.sort_keys = False

CACHE_CONTROL = "private, max-age=300"


def _storage():
    storage = app.config.get("STORAGE")
    if storage is None:
        storage = open_storage()
        app.config["STORAGE"] = storage
    return storage


def _wedding_id() -> str:
    return request.args.get("wedding_id") or config.query.default_wedding_id


def _searcher(wedding_id: str) -> IndexSearcher:
    resolver = app.config.get("URL_RESOLVER") or TemplateUrlResolver(wedding_id)
    return IndexSearcher(_storage(), resolver)


def _ok(payload):
    response = jsonify(payload)
    response.headers["Cache-Control"] = CACHE_CONTROL
    return response


@app.errorhandler(InvalidInput)
def handle_invalid_input(e):
    return jsonify({"error": str(e)}), 400


@app.errorhandler(NotFound)
def handle_not_found(e):
    return jsonify({"error": str(e)}), 404


@app.errorhandler(CorruptData)
def handle_corrupt_data(e):
    logger.error("Corrupt index data: %s", e)
    return jsonify({"error": f"Corrupt index data: {e}"}), 502


@app.errorhandler(Exception)
def handle_unexpected(e):
    if isinstance(e, HTTPException):
        return jsonify({"error": e.description}), e.code
    logger.exception("Unhandled error serving %s", request.path)
    return jsonify({"error": "Internal server error", "details": str(e)}), 500


@app.route("/api/video/search/person")
def api_search_person():
    wedding_id = _wedding_id()
    result = _searcher(wedding_id).search_person(wedding_id, request.args.get("person_id", ""))
    return _ok(result.to_dict())


@app.route("/api/video/search/moment")
def api_search_moment():
    wedding_id = _wedding_id()
    result = _searcher(wedding_id).search_moment(wedding_id, request.args.get("moment_id", ""))
    return _ok(result.to_dict())


@app.route("/api/video/search/timeline")
def api_search_timeline():
    wedding_id = _wedding_id()
    result = _searcher(wedding_id).search_timeline(
        wedding_id, request.args.get("start"), request.args.get("end")
    )
    return _ok(result.to_dict())


@app.route("/api/video/people")
def api_list_people():
    wedding_id = _wedding_id()
    people = _searcher(wedding_id).list_people(wedding_id)
    return _ok({"wedding_id": wedding_id, "people": [p.to_dict() for p in people]})


@app.route("/api/video/moments")
def api_list_moments():
    wedding_id = _wedding_id()
    moment_type = request.args.get("type") or None
    moments = _searcher(wedding_id).list_moments(wedding_id, moment_type)
    return _ok(
        {
            "wedding_id": wedding_id,
            "moment_type": moment_type or "all",
            "moments": [m.to_dict() for m in moments],
        }
    )


@app.route("/api/video/people/<person_id>/frequency")
def api_person_frequency(person_id: str):
    wedding_id = _wedding_id()
    result = _searcher(wedding_id).estimate_person_frequency(wedding_id, person_id)
    return _ok(result.to_dict())


def main(host: str = "0.0.0.0", port: int = 5000, debug: bool = False) -> None:
    logging.basicConfig(level=logging.INFO)
    app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    main()
