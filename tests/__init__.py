"""
docmodel test suite.

This package contains:
- unit/: Unit tests (schema, matching, datastore, registry, config)
- integration/: Model, query and populate tests over real datastores
"""
