"""Shared primitives: process, HTTP, filesystem, logging."""
