"""IPLD codecs: CAR v1 archives and agent message bundles."""
