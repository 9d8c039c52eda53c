"""Notifications: tagged payload union, persistence and background dispatch."""
