from .scored_buffer import ScoredBuffer

__all__ = ["ScoredBuffer"]
