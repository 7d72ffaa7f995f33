from docpipe.idempotency.guard import IdempotencyGuard, get_idempotency_guard

__all__ = ["IdempotencyGuard", "get_idempotency_guard"]
