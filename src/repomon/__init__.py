"""Repomon — watch git working trees and publish change snapshots."""

__version__ = "0.3.0"
