"""
ordercursor - cursor position recovery for paginated order APIs
"""

__version__ = "1.0.0"

from .services.recovery_service import RecoveryOrchestrator, recover_bookmark  # noqa: E402

__all__ = [
    "RecoveryOrchestrator",
    "recover_bookmark",
]
