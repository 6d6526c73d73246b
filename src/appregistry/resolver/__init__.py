"""Dependency resolution over the entity store."""

from appregistry.resolver.resolver import (
    DependencyResolver,
    PlanEntry,
    Resolution,
    find_cycle,
    installed_hash,
)

__all__ = [
    "DependencyResolver",
    "PlanEntry",
    "Resolution",
    "find_cycle",
    "installed_hash",
]
