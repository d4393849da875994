"""Sail Operator - control plane lifecycle management for Istio."""

from .conditions import derive_state, get_condition, set_condition
from .config import OperatorConfig, ReconcilerConfig, Settings, get_settings
from .controllers import (
    DataPlaneAgentController,
    IstioController,
    IstioRevisionController,
    IstioRevisionTagController,
)
from .errors import (
    ErrorList,
    NameAlreadyExistsError,
    NotFoundError,
    ReferenceNotFoundError,
    SailOperatorError,
    TransientError,
    ValidationError,
)
from .helm import HelmCliInstaller, HelmPostRenderer, Installer
from .manager import ControllerManager
from .models import (
    Condition,
    Istio,
    IstioRevision,
    IstioRevisionTag,
    DataPlaneAgent,
    WatchEvent,
)
from .queue import WorkQueue
from .reconciler import Result, StandardReconciler
from .store import KubernetesResourceStore, ResourceStore
from .watch import ResourceWatcher

__version__ = "0.1.0"

__all__ = [
    # Controllers
    "IstioController",
    "IstioRevisionController",
    "IstioRevisionTagController",
    "DataPlaneAgentController",
    "StandardReconciler",
    "Result",
    # Runtime
    "ControllerManager",
    "ResourceWatcher",
    "WorkQueue",
    # Collaborators
    "ResourceStore",
    "KubernetesResourceStore",
    "Installer",
    "HelmCliInstaller",
    "HelmPostRenderer",
    # Configuration
    "Settings",
    "get_settings",
    "ReconcilerConfig",
    "OperatorConfig",
    # Conditions
    "get_condition",
    "set_condition",
    "derive_state",
    # Errors
    "SailOperatorError",
    "ValidationError",
    "TransientError",
    "NameAlreadyExistsError",
    "ReferenceNotFoundError",
    "NotFoundError",
    "ErrorList",
    # Models
    "Istio",
    "IstioRevision",
    "IstioRevisionTag",
    "DataPlaneAgent",
    "Condition",
    "WatchEvent",
]
