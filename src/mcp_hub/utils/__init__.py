from .events import EventHook
from .logsetup import configure_logging

__all__ = ["EventHook", "configure_logging"]
