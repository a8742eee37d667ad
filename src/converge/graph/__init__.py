"""Resource graph construction."""

from .models import Module, Ref, Resource
from .dependency_graph import ResourceGraph, build_graph

__all__ = ["Module", "Ref", "Resource", "ResourceGraph", "build_graph"]
