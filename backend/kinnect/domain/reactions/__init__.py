"""Reactions on posts, comments and replies with atomic toggle semantics."""
