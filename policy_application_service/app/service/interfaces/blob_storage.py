from abc import ABC, abstractmethod
from typing import Optional


class AbstractBlobStorage(ABC):
    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        """
        Stores bytes under a path and returns a durable reference (URL) to them.

        Objects are addressed by path only; uploading the same content twice
        under two paths produces two objects.

        Raises:
            Any storage error (permission, quota, connectivity) unchanged.
        """
        pass
