"""Terminal and JSON renderers for snapshots and registry events."""
