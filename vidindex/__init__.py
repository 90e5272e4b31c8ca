"""
Multi-source video content index and query engine.

Modules:
- config: global configuration for paths and parameters.
- errors: error taxonomy shared by builders and the query path.
- hashing: hash families used by the probabilistic filters.
- bloom: bloom filter with a fixed binary format.
- sketch: count-min sketch with a fixed binary format.
- manifests: typed, versioned JSON manifests and index records.
- keys: storage key namespace.
- indexes: time / person / moment index construction and lookups.
- storage: memory, local directory and HTTP storage clients.
- builder: catalog -> published indexes, filters and manifests.
- search: person / moment / timeline queries with filter pruning.
- playback: default playback URL resolver.
- cli: command-line interface entrypoint.
- app: Flask HTTP query surface.
"""
