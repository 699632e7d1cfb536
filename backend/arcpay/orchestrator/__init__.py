from .engine import PaymentOrchestrator

__all__ = ["PaymentOrchestrator"]
