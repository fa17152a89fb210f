from pydantic import BaseModel
from typing import Optional


class PlatformErrorResponse(BaseModel):
    title: str
    status: int
    detail: str
    error_code: Optional[str] = None
    url: Optional[str] = None

    def with_url(self, url: str) -> "PlatformErrorResponse":
        """Return copy that records the request url that failed."""
        return self.model_copy(update={"url": url})
