from .business import MemoryBusinessMixin
from .messages import MemoryMessagesMixin
from .records import MemoryRecordsMixin
from .schema import MemorySchemaMixin
from .threads import MemoryThreadsMixin
from .usage import MemoryUsageMixin

__all__ = [
    "MemorySchemaMixin",
    "MemoryBusinessMixin",
    "MemoryThreadsMixin",
    "MemoryMessagesMixin",
    "MemoryRecordsMixin",
    "MemoryUsageMixin",
]
