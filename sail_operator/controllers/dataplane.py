"""Controller for the singleton data plane agents, IstioCNI and ZTunnel."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..conditions import derive_state, set_condition
from ..config import OperatorConfig, ReconcilerConfig
from ..constants import CNI_CHART_NAME, FINALIZER_NAME, ZTUNNEL_CHART_NAME
from ..errors import ErrorList, SailOperatorError, ValidationError
from ..helm import Installer
from ..models import (
    SINGLETON_NAME,
    Condition,
    ConditionStatus,
    ConditionType,
    DataPlaneAgent,
    DataPlaneAgentReason,
    DataPlaneAgentStatus,
    Kind,
)
from ..readiness import daemon_set_ready_condition
from ..reconciler import Result, StandardReconciler, handle_reconcile_error
from ..store import ResourceStore
from ..validation import validate_target_namespace
from ..values import apply_agent_image_digest, apply_platform, apply_profiles

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentKind:
    """What differs between the data plane agent kinds."""

    kind: Kind
    chart_name: str
    daemon_set_name: str
    release_name: str
    image_component: str


AGENT_KINDS = {
    Kind.ISTIO_CNI.value: AgentKind(
        kind=Kind.ISTIO_CNI,
        chart_name=CNI_CHART_NAME,
        daemon_set_name="istio-cni-node",
        release_name="istio-cni",
        image_component="cni",
    ),
    Kind.ZTUNNEL.value: AgentKind(
        kind=Kind.ZTUNNEL,
        chart_name=ZTUNNEL_CHART_NAME,
        daemon_set_name="ztunnel",
        release_name="ztunnel",
        image_component="ztunnel",
    ),
}


class DataPlaneAgentController:
    """Installs a data plane agent chart and reports its DaemonSet readiness."""

    def __init__(
        self,
        kind: str,
        store: ResourceStore,
        installer: Installer,
        config: ReconcilerConfig,
        operator_config: Optional[OperatorConfig] = None,
    ):
        """
        Initialize the controller.

        Args:
            kind: IstioCNI or ZTunnel
            store: Resource store
            installer: Chart installer
            config: Reconciler configuration
            operator_config: Image digests applied to computed values

        Raises:
            KeyError: If kind is not a data plane agent kind
        """
        self.agent = AGENT_KINDS[kind]
        self.store = store
        self.installer = installer
        self.config = config
        self.operator_config = operator_config or OperatorConfig()
        self.reconciler = StandardReconciler(
            store,
            self.agent.kind.value,
            self.do_reconcile,
            self.finalize,
            FINALIZER_NAME,
        )

    @property
    def kind(self) -> str:
        return self.agent.kind.value

    def reconcile(self, name: str) -> Result:
        return self.reconciler.reconcile(name)

    def do_reconcile(self, obj: dict[str, Any]) -> Result:
        agent = DataPlaneAgent.model_validate(obj)
        logger.info(f"Reconciling {self.kind} {agent.name}")

        reconcile_err = None
        try:
            self._validate(agent)
            self._install(agent)
        except (SailOperatorError, ValueError) as e:
            reconcile_err = e

        errs = ErrorList()
        errs.add(reconcile_err)
        errs.add(self.update_status(agent, reconcile_err))
        logger.info(f"Reconciliation of {self.kind} {agent.name} done")
        return handle_reconcile_error(errs.error(), Result())

    def finalize(self, obj: dict[str, Any]) -> None:
        agent = DataPlaneAgent.model_validate(obj)
        if agent.spec.namespace:
            self.installer.uninstall(self.agent.release_name, agent.spec.namespace)

    def _validate(self, agent: DataPlaneAgent) -> None:
        if agent.name != SINGLETON_NAME:
            raise ValidationError(f'metadata.name must be "{SINGLETON_NAME}"')
        if not agent.spec.version:
            raise ValidationError("spec.version not set")
        if not agent.spec.namespace:
            raise ValidationError("spec.namespace not set")
        validate_target_namespace(self.store, agent.spec.namespace)

    def compute_values(self, agent: DataPlaneAgent) -> dict[str, Any]:
        values = apply_agent_image_digest(
            agent.spec.version,
            agent.spec.values or {},
            self.operator_config,
            self.agent.image_component,
        )
        values = apply_profiles(
            self.config.resource_directory,
            agent.spec.version,
            self.config.default_profile,
            agent.spec.profile,
            values,
        )
        apply_platform(self.config.platform, values)
        return values

    def _install(self, agent: DataPlaneAgent) -> None:
        chart_dir = f"{self.config.resource_directory}/{agent.spec.version}/charts/{self.agent.chart_name}"
        self.installer.upgrade_or_install(
            chart_dir,
            self.compute_values(agent),
            agent.spec.namespace,
            self.agent.release_name,
            agent.owner_reference(),
        )

    def determine_status(
        self, agent: DataPlaneAgent, reconcile_err: Optional[BaseException]
    ) -> tuple[DataPlaneAgentStatus, Optional[BaseException]]:
        errs = ErrorList()
        status = agent.status.model_copy(deep=True)
        status.observed_generation = agent.metadata.generation or 0

        if reconcile_err is None:
            reconciled = Condition(type=ConditionType.RECONCILED.value, status=ConditionStatus.TRUE.value)
        else:
            reconciled = Condition(
                type=ConditionType.RECONCILED.value,
                status=ConditionStatus.FALSE.value,
                reason=DataPlaneAgentReason.RECONCILE_ERROR.value,
                message=f"error reconciling resource: {reconcile_err}",
            )

        ready, err = daemon_set_ready_condition(self.store, self.agent.daemon_set_name, agent.spec.namespace)
        errs.add(err)

        set_condition(status.conditions, reconciled)
        set_condition(status.conditions, ready)
        status.state = derive_state(reconciled, ready)
        return status, errs.error()

    def update_status(self, agent: DataPlaneAgent, reconcile_err: Optional[BaseException]) -> Optional[BaseException]:
        errs = ErrorList()
        status, err = self.determine_status(agent, reconcile_err)
        errs.add(err)

        if status != agent.status:
            try:
                self.store.patch_status(
                    self.kind,
                    agent.name,
                    status.model_dump(by_alias=True, exclude_none=True, mode="json"),
                )
            except SailOperatorError as e:
                errs.add(e)
        return errs.error()
