"""Controller for IstioRevision resources."""

import logging
from typing import Any, Optional

from ..conditions import derive_state, set_condition
from ..config import ReconcilerConfig
from ..constants import FINALIZER_NAME, ISTIOD_CHART_NAME, ISTIOD_REMOTE_CHART_NAME
from ..dependencies import DependencyHealthChecker
from ..errors import (
    ErrorList,
    NameAlreadyExistsError,
    NotFoundError,
    SailOperatorError,
    ValidationError,
)
from ..helm import Installer
from ..models import (
    DEFAULT_REVISION,
    Condition,
    ConditionStatus,
    ConditionType,
    IstioRevision,
    IstioRevisionReason,
    IstioRevisionStatus,
    IstioRevisionTag,
    IstioRevisionType,
    Kind,
)
from ..readiness import revision_ready_condition
from ..reconciler import Result, StandardReconciler, handle_reconcile_error
from ..store import ResourceStore
from ..usage import UsageDetector
from ..validation import resource_takes_precedence, validate_target_namespace
from ..values import get_nested

logger = logging.getLogger(__name__)


def chart_name(revision: IstioRevision) -> str:
    if revision.spec.type == IstioRevisionType.REMOTE:
        return ISTIOD_REMOTE_CHART_NAME
    return ISTIOD_CHART_NAME


def release_name(revision: IstioRevision) -> str:
    return f"{revision.name}-{chart_name(revision)}"


class IstioRevisionController:
    """Installs revisions and tracks their readiness, dependencies and usage."""

    def __init__(self, store: ResourceStore, installer: Installer, config: ReconcilerConfig):
        """
        Initialize the controller.

        Args:
            store: Resource store
            installer: Chart installer
            config: Reconciler configuration
        """
        self.store = store
        self.installer = installer
        self.config = config
        self.dependencies = DependencyHealthChecker(store, config)
        self.usage = UsageDetector(store)
        self.reconciler = StandardReconciler(
            store,
            Kind.ISTIO_REVISION.value,
            self.do_reconcile,
            self.finalize,
            FINALIZER_NAME,
        )

    def reconcile(self, name: str) -> Result:
        return self.reconciler.reconcile(name)

    def do_reconcile(self, obj: dict[str, Any]) -> Result:
        revision = IstioRevision.model_validate(obj)
        logger.info(f"Reconciling IstioRevision {revision.name}")

        reconcile_err = None
        try:
            self._validate(revision)
            self._install(revision)
        except SailOperatorError as e:
            reconcile_err = e

        errs = ErrorList()
        errs.add(reconcile_err)
        status, status_err = self.update_status(revision, reconcile_err)
        errs.add(status_err)
        logger.info(f"Reconciliation of IstioRevision {revision.name} done")

        result = Result()
        ready = next(c for c in status.conditions if c.type == ConditionType.READY.value)
        if ready.status != ConditionStatus.TRUE.value:
            result = Result(requeue_after=self.config.revision_requeue_seconds)
        return handle_reconcile_error(errs.error(), result)

    def finalize(self, obj: dict[str, Any]) -> None:
        revision = IstioRevision.model_validate(obj)
        if revision.spec.namespace:
            self.installer.uninstall(release_name(revision), revision.spec.namespace)

    def _validate(self, revision: IstioRevision) -> None:
        if not revision.spec.version:
            raise ValidationError("spec.version not set")
        if not revision.spec.namespace:
            raise ValidationError("spec.namespace not set")
        if revision.spec.values is None:
            raise ValidationError("spec.values not set")

        validate_target_namespace(self.store, revision.spec.namespace)

        expected_revision = "" if revision.name == DEFAULT_REVISION else revision.name
        if (get_nested(revision.spec.values, "revision") or "") != expected_revision:
            if revision.name == DEFAULT_REVISION:
                raise ValidationError(f'spec.values.revision must be "" when IstioRevision name is {DEFAULT_REVISION}')
            raise ValidationError("spec.values.revision does not match metadata.name")

        if get_nested(revision.spec.values, "global", "istioNamespace") != revision.spec.namespace:
            raise ValidationError("spec.values.global.istioNamespace does not match spec.namespace")

        try:
            tag = IstioRevisionTag.model_validate(self.store.get(Kind.ISTIO_REVISION_TAG.value, revision.name))
        except NotFoundError:
            return
        if not resource_takes_precedence(revision.metadata, tag.metadata):
            raise NameAlreadyExistsError("an IstioRevisionTag exists with this name")

    def _install(self, revision: IstioRevision) -> None:
        chart = chart_name(revision)
        chart_dir = f"{self.config.resource_directory}/{revision.spec.version}/charts/{chart}"
        self.installer.upgrade_or_install(
            chart_dir,
            revision.spec.values or {},
            revision.spec.namespace,
            release_name(revision),
            revision.owner_reference(),
        )

    def _reconciled_condition(self, reconcile_err: Optional[BaseException]) -> Condition:
        if reconcile_err is None:
            return Condition(type=ConditionType.RECONCILED.value, status=ConditionStatus.TRUE.value)
        if isinstance(reconcile_err, NameAlreadyExistsError):
            reason = IstioRevisionReason.NAME_ALREADY_EXISTS.value
            message = str(reconcile_err)
        else:
            reason = IstioRevisionReason.RECONCILE_ERROR.value
            message = f"error reconciling resource: {reconcile_err}"
        return Condition(
            type=ConditionType.RECONCILED.value,
            status=ConditionStatus.FALSE.value,
            reason=reason,
            message=message,
        )

    def _in_use_condition(self, revision: IstioRevision) -> tuple[Condition, Optional[Exception]]:
        try:
            in_use = self.usage.is_revision_in_use(revision)
        except SailOperatorError as e:
            return Condition(
                type=ConditionType.IN_USE.value,
                status=ConditionStatus.UNKNOWN.value,
                reason=IstioRevisionReason.USAGE_CHECK_FAILED.value,
                message=f"failed to determine if revision is in use: {e}",
            ), e
        if in_use:
            return Condition(
                type=ConditionType.IN_USE.value,
                status=ConditionStatus.TRUE.value,
                reason=IstioRevisionReason.REFERENCED_BY_WORKLOADS.value,
                message="Referenced by at least one pod or namespace",
            ), None
        return Condition(
            type=ConditionType.IN_USE.value,
            status=ConditionStatus.FALSE.value,
            reason=IstioRevisionReason.NOT_REFERENCED.value,
            message="Not referenced by any pod or namespace",
        ), None

    def determine_status(
        self, revision: IstioRevision, reconcile_err: Optional[BaseException]
    ) -> tuple[IstioRevisionStatus, Optional[BaseException]]:
        """
        Compute the status of a revision.

        The four conditions are computed independently; a failure in one does
        not prevent the others from being evaluated.

        Returns:
            The new status, and the errors encountered while computing it
        """
        errs = ErrorList()
        status = revision.status.model_copy(deep=True)
        status.observed_generation = revision.metadata.generation or 0

        reconciled = self._reconciled_condition(reconcile_err)
        ready, err = revision_ready_condition(self.store, revision)
        errs.add(err)
        dependencies, err = self.dependencies.check(revision)
        errs.add(err)
        in_use, err = self._in_use_condition(revision)
        errs.add(err)

        for condition in (reconciled, ready, dependencies, in_use):
            set_condition(status.conditions, condition)
        status.state = derive_state(reconciled, ready, dependencies)
        return status, errs.error()

    def update_status(
        self, revision: IstioRevision, reconcile_err: Optional[BaseException]
    ) -> tuple[IstioRevisionStatus, Optional[BaseException]]:
        errs = ErrorList()
        status, err = self.determine_status(revision, reconcile_err)
        errs.add(err)

        if status != revision.status:
            try:
                self.store.patch_status(
                    Kind.ISTIO_REVISION.value,
                    revision.name,
                    status.model_dump(by_alias=True, exclude_none=True, mode="json"),
                )
            except SailOperatorError as e:
                errs.add(e)
        return status, errs.error()
