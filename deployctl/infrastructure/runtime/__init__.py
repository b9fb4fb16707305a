from .base import RuntimeStartError, RuntimeStopError, ServiceRuntime
from .compose_runtime import ComposeRuntime

__all__ = ["ComposeRuntime", "RuntimeStartError", "RuntimeStopError", "ServiceRuntime"]
