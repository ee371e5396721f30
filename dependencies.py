# dependencies.py

from fastapi import Request
from typing import Optional

from notifications import Notifications
from registry import Registry


def get_registry(request: Request) -> Registry:
    return request.app.state.registry


def get_notifier(request: Request) -> Optional[Notifications]:
    return getattr(request.app.state, "notifier", None)
