from .simulated_backend import SimulatedBackend

__all__ = ["SimulatedBackend"]
