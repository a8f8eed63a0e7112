"""Watcher, handoff queue, uploader and pipeline supervisor."""
