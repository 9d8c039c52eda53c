"""Ephemeral realtime presence: sessions, rooms and typing state."""
