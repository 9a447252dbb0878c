from fastapi import Depends, Request
from typing import Optional

from powerwatt.exceptions import PipelineUnavailableException
from powerwatt.services.usage_manager import UsageManager


def get_optional_usage_manager(request: Request) -> Optional[UsageManager]:
    return getattr(request.app.state, "usage_manager", None)


def get_usage_manager(manager: Optional[UsageManager] = Depends(get_optional_usage_manager)) -> UsageManager:
    if manager is None:
        raise PipelineUnavailableException("Usage tracking is not running")
    return manager
