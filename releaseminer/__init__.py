# detect if we are imported from the setup procedure (borrowed from numpy code)
try:
    __RELEASEMINER_SETUP__
except NameError:
    __RELEASEMINER_SETUP__ = False

if not __RELEASEMINER_SETUP__:
    from .domain.models import (
        Asset,
        AssetRequest,
        BuildTarget,
        DispatchMode,
        MinerJob,
        Plan,
    )
    from .application.mining_engine import MiningEngine

__version__ = "0.1.0"
