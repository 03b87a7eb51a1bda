"""Persistence helpers for KinPath."""

from kinpath.persistence.sqlite_store import (
    connect,
    create_project,
    ensure_schema,
    load_profile,
    save_profile,
    save_reaction,
    save_run,
    save_species,
    save_state,
)

__all__ = [
    "connect",
    "create_project",
    "ensure_schema",
    "load_profile",
    "save_profile",
    "save_reaction",
    "save_run",
    "save_species",
    "save_state",
]
