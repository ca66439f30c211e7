"""Materialization of resolved manifests into cached tarballs."""
