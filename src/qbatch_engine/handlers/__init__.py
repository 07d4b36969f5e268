from .recovery_exception_handler import RecoveryExceptionHandler

__all__ = ["RecoveryExceptionHandler"]
