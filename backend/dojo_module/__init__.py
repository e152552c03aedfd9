from .context import DojoContext, init_dojo_module
from .routes import router


__all__ = ["router", "init_dojo_module", "DojoContext"]
