"""Registry for versioned, signed WASM application bundles.

Publishers submit immutable (package, version) records, either v1 manifests
or v2 bundles. Consumers fetch, search and resolve dependency graphs against
semantic-version ranges.
"""

__version__ = "0.1.0"
