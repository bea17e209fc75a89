"""
Flipmatch - Robot memory-matching game orchestration engine.

A human plays a physical 8-card memory game against a robot arm.
The engine:
- Samples a camera feed and locates the board
- Classifies every card position
- Commands the arm to flip and cover cards
- Evaluates matches and keeps the canonical game state
- Streams frames and state to browser spectators
"""

__version__ = "0.1.0"
