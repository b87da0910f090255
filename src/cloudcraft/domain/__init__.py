"""
Domain layer.

- core/: exception taxonomy shared by every layer
- server/: descriptor, identifiers, tags and port derivation
- base/ports/: abstract ports implemented by infrastructure and providers
"""
