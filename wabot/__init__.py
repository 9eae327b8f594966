"""wabot - Debounced WhatsApp sales assistant orchestrator."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("wabot")
except PackageNotFoundError:
    __version__ = "0.3.0"

__logo__ = "💬"
__brand__ = "wabot"
