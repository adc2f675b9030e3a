"""
Confidential Compute Adapters
"""

from .memory import InMemoryConfidentialCompute
from .relayer import RelayerConfidentialCompute

__all__ = [
    "InMemoryConfidentialCompute",
    "RelayerConfidentialCompute",
]
