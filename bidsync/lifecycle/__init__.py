from .controller import ConnectionLifecycleController

__all__ = ["ConnectionLifecycleController"]
