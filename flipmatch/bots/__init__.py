"""
Bots module - The robot opponent's decision-making.

Provides:
- FlipPolicy: Interface for choosing the next card to flip
- MemoryPolicy: Remembers every card it has seen
- RandomPolicy: Flips at random
"""

from .policy import FlipPolicy, FlipDecision, MemoryPolicy, RandomPolicy, legal_flips

__all__ = [
    "FlipPolicy",
    "FlipDecision",
    "MemoryPolicy",
    "RandomPolicy",
    "legal_flips",
]
