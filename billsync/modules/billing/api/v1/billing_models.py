from typing import Optional

from pydantic import BaseModel


class WebhookResponse(BaseModel):
    """Either {"received": true} or {"error": "..."}; both are sent with 200."""

    received: Optional[bool] = None
    error: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
    code: str
