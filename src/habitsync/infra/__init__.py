"""Concrete adapters: local database, persisted collections, remote HTTP API."""
