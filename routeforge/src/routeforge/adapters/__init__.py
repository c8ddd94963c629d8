"""Engine adapter registry keyed by :class:`~routeforge.config.schema.EngineType`."""

from typing import Dict, Union

from ..config.schema import EngineType
from .base import AdapterOutput, EngineAdapter
from .mihomo import MihomoAdapter
from .singbox import SingboxAdapter

_ADAPTERS: Dict[EngineType, EngineAdapter] = {
    EngineType.MIHOMO: MihomoAdapter(),
    EngineType.SINGBOX: SingboxAdapter(),
}


def get_adapter(engine: Union[EngineType, str]) -> EngineAdapter:
    """Return the stateless adapter for ``engine``."""

    return _ADAPTERS[EngineType(engine)]


__all__ = ["AdapterOutput", "EngineAdapter", "MihomoAdapter", "SingboxAdapter", "get_adapter"]
