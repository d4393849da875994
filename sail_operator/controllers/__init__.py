"""Controllers for the sail operator's resource kinds."""

from .dataplane import AGENT_KINDS, DataPlaneAgentController
from .istio import IstioController
from .istiorevision import IstioRevisionController
from .istiorevisiontag import IstioRevisionTagController

__all__ = [
    "AGENT_KINDS",
    "DataPlaneAgentController",
    "IstioController",
    "IstioRevisionController",
    "IstioRevisionTagController",
]
