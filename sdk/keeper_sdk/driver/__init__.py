"""
Driver abstraction for the keeper SDK.

A driver is the callback-only transport underneath KeeperClient:
- ZooKeeper via kazoo (production)
- In-memory tree (for testing and local development)

Invariants:
    - Every submitted request completes exactly once
    - Completions and watch events arrive on driver threads
    - Watches fire at most once per arming

How to change safely:
    - New backends must implement the Driver protocol
    - Run the integration suite against InMemoryDriver and a real ensemble
"""

from .base import Driver, create_driver
from .memory import InMemoryDriver, InMemoryTree
from .zookeeper import ZookeeperDriver

__all__ = [
    # Protocol
    "Driver",
    # Factory
    "create_driver",
    # Implementations
    "ZookeeperDriver",
    "InMemoryDriver",
    "InMemoryTree",
]
