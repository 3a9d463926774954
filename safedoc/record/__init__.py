from .document import DEFAULT_SCENARIO, Document

__all__ = ["Document", "DEFAULT_SCENARIO"]
