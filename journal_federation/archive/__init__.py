"""Packaging, browsing and removal of submission archives."""

from .store import ArchiveStore, normalize, classify, package, sniff, is_zip
