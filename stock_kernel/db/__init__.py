"""Database infrastructure: declarative base, engine/session management, immutability listeners."""
