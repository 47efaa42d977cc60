"""CLI command modules."""

from .patterns import patterns
