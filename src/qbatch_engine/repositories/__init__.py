from .in_memory_job_repository import InMemoryJobRepository

__all__ = ["InMemoryJobRepository"]
