"""Storage key namespace, rooted at ``{wedding_id}/``.

Source manifests store index locations relative to the wedding root
(``videographers/...``); ``resolve`` turns such a URI back into a key.
"""

WEDDING_MANIFEST = "manifest.json"


def wedding_manifest_key(wedding_id: str) -> str:
    return f"{wedding_id}/{WEDDING_MANIFEST}"


def source_prefix(source_id: str) -> str:
    return f"videographers/{source_id}"


def source_manifest_uri(source_id: str) -> str:
    return f"{source_prefix(source_id)}/manifest.json"


def segment_manifest_uri(source_id: str, segment_id: str) -> str:
    return f"{source_prefix(source_id)}/segments/{segment_id}/manifest.json"


def time_index_uri(source_id: str) -> str:
    return f"{source_prefix(source_id)}/indices/time/timeline.json.gz"


def person_index_uri(source_id: str) -> str:
    return f"{source_prefix(source_id)}/indices/content/people/index.json.gz"


def moment_index_uri(source_id: str) -> str:
    return f"{source_prefix(source_id)}/indices/content/moments/index.json.gz"


def people_bloom_uri(source_id: str) -> str:
    return f"{source_prefix(source_id)}/indices/content/bloom/people.bloom"


def moments_bloom_uri(source_id: str) -> str:
    return f"{source_prefix(source_id)}/indices/content/bloom/moments.bloom"


def people_sketch_uri(source_id: str) -> str:
    return f"{source_prefix(source_id)}/indices/content/sketches/counts.cms"


def resolve(wedding_id: str, uri: str) -> str:
    """Absolute storage key for a wedding-relative URI."""
    return f"{wedding_id}/{uri.lstrip('/')}"


def source_manifest_key(wedding_id: str, source_id: str) -> str:
    return resolve(wedding_id, source_manifest_uri(source_id))


def segment_manifest_key(wedding_id: str, source_id: str, segment_id: str) -> str:
    return resolve(wedding_id, segment_manifest_uri(source_id, segment_id))


def time_index_key(wedding_id: str, source_id: str) -> str:
    return resolve(wedding_id, time_index_uri(source_id))


def person_index_key(wedding_id: str, source_id: str) -> str:
    return resolve(wedding_id, person_index_uri(source_id))


def moment_index_key(wedding_id: str, source_id: str) -> str:
    return resolve(wedding_id, moment_index_uri(source_id))


def people_bloom_key(wedding_id: str, source_id: str) -> str:
    return resolve(wedding_id, people_bloom_uri(source_id))


def moments_bloom_key(wedding_id: str, source_id: str) -> str:
    return resolve(wedding_id, moments_bloom_uri(source_id))


def people_sketch_key(wedding_id: str, source_id: str) -> str:
    return resolve(wedding_id, people_sketch_uri(source_id))


def global_people_bloom_key(wedding_id: str) -> str:
    return f"{wedding_id}/global/bloom/people-global.bloom"


def global_moment_key(wedding_id: str, moment_id: str) -> str:
    return f"{wedding_id}/global/moments/{moment_id}.json"
