"""Compute provider clients behind one interface.

Exports:
    ComputeClient: Protocol every provider client implements.
    build: Builds a provider settings variant from its key.
"""

from burrow.providers.base import ComputeClient as ComputeClient
from burrow.providers.registry import build as build
