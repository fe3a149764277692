from .memory import MemoryTaskQueue

__all__ = ["MemoryTaskQueue"]
