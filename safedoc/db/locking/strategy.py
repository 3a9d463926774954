from enum import Enum


class LockStrategy(str, Enum):
    DOCUMENT = "document"
    STUBBORN = "stubborn"
