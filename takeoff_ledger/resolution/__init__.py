"""Conflict resolution between competing inferences."""

from .resolver import Candidate, ConflictResolver, Resolution, ResolutionOutcome

__all__ = ["Candidate", "ConflictResolver", "Resolution", "ResolutionOutcome"]
