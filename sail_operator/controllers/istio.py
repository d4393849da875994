"""Controller for Istio resources."""

import logging
from typing import Any, Optional

from ..conditions import get_condition, set_condition
from ..config import OperatorConfig, ReconcilerConfig
from ..errors import (
    ConditionTranslationError,
    ErrorList,
    NotFoundError,
    SailOperatorError,
    ValidationError,
)
from ..models import (
    Condition,
    ConditionStatus,
    ConditionType,
    Istio,
    IstioReason,
    IstioRevision,
    IstioRevisionReason,
    IstioRevisionType,
    IstioStatus,
    Kind,
    RevisionSummary,
)
from ..reconciler import Result, StandardReconciler, handle_reconcile_error
from ..revision import (
    RevisionPruner,
    active_revision_name,
    list_owned_revisions,
    summarize_revisions,
)
from ..store import ResourceStore
from ..values import compute_values

logger = logging.getLogger(__name__)

# Revision condition types mirrored onto the Istio
CONDITION_TYPE_TRANSLATION = {
    ConditionType.RECONCILED.value: ConditionType.RECONCILED.value,
    ConditionType.READY.value: ConditionType.READY.value,
    ConditionType.DEPENDENCIES_HEALTHY.value: ConditionType.DEPENDENCIES_HEALTHY.value,
}

REASON_TRANSLATION = {
    "": "",
    IstioRevisionReason.HEALTHY.value: IstioReason.HEALTHY.value,
    IstioRevisionReason.RECONCILE_ERROR.value: IstioReason.RECONCILE_ERROR.value,
    IstioRevisionReason.NAME_ALREADY_EXISTS.value: IstioReason.NAME_ALREADY_EXISTS.value,
    IstioRevisionReason.ISTIOD_NOT_READY.value: IstioReason.ISTIOD_NOT_READY.value,
    IstioRevisionReason.REMOTE_ISTIOD_NOT_READY.value: IstioReason.REMOTE_ISTIOD_NOT_READY.value,
    IstioRevisionReason.READINESS_CHECK_FAILED.value: IstioReason.READINESS_CHECK_FAILED.value,
    IstioRevisionReason.ISTIO_CNI_NOT_FOUND.value: IstioReason.ISTIO_CNI_NOT_FOUND.value,
    IstioRevisionReason.ISTIO_CNI_NOT_HEALTHY.value: IstioReason.ISTIO_CNI_NOT_HEALTHY.value,
    IstioRevisionReason.ZTUNNEL_NOT_FOUND.value: IstioReason.ZTUNNEL_NOT_FOUND.value,
    IstioRevisionReason.ZTUNNEL_NOT_HEALTHY.value: IstioReason.ZTUNNEL_NOT_HEALTHY.value,
    IstioRevisionReason.DEPENDENCY_CHECK_FAILED.value: IstioReason.DEPENDENCY_CHECK_FAILED.value,
}


def translate_reason(reason: str) -> str:
    try:
        return REASON_TRANSLATION[reason]
    except KeyError:
        raise ConditionTranslationError(f"can't convert IstioRevision condition reason {reason!r}") from None


def translate_condition(condition: Condition) -> Condition:
    """
    Convert an IstioRevision condition into the matching Istio condition.

    Raises:
        ConditionTranslationError: If the type or reason has no Istio counterpart
    """
    try:
        condition_type = CONDITION_TYPE_TRANSLATION[condition.type]
    except KeyError:
        raise ConditionTranslationError(f"can't convert IstioRevision condition type {condition.type!r}") from None
    return Condition(
        type=condition_type,
        status=condition.status,
        reason=translate_reason(condition.reason),
        message=condition.message,
    )


class IstioController:
    """Reconciles Istio resources into their active IstioRevision."""

    def __init__(
        self,
        store: ResourceStore,
        config: ReconcilerConfig,
        operator_config: Optional[OperatorConfig] = None,
    ):
        """
        Initialize the controller.

        Args:
            store: Resource store
            config: Reconciler configuration
            operator_config: Image digests applied to computed values
        """
        self.store = store
        self.config = config
        self.operator_config = operator_config or OperatorConfig()
        self.pruner = RevisionPruner(store)
        # Owned revisions are garbage-collected through owner references
        self.reconciler = StandardReconciler(store, Kind.ISTIO.value, self.do_reconcile)

    def reconcile(self, name: str) -> Result:
        return self.reconciler.reconcile(name)

    def do_reconcile(self, obj: dict[str, Any]) -> Result:
        istio = Istio.model_validate(obj)
        logger.info(f"Reconciling Istio {istio.name}")

        result = Result()
        reconcile_err = None
        try:
            result = self._do_reconcile(istio)
        except (SailOperatorError, ValueError) as e:
            reconcile_err = e

        errs = ErrorList()
        errs.add(reconcile_err)
        errs.add(self.update_status(istio, reconcile_err))
        logger.info(f"Reconciliation of Istio {istio.name} done")
        return handle_reconcile_error(errs.error(), result)

    def _do_reconcile(self, istio: Istio) -> Result:
        if not istio.spec.version:
            raise ValidationError("spec.version not set")
        if not istio.spec.namespace:
            raise ValidationError("spec.namespace not set")

        revision_name = active_revision_name(istio)
        values = compute_values(
            istio.spec.values,
            istio.spec.namespace,
            istio.spec.version,
            self.config.platform,
            self.config.default_profile,
            istio.spec.profile,
            self.config.resource_directory,
            revision_name,
            self.operator_config,
        )

        logger.info(f"Creating or updating IstioRevision {revision_name}")
        self._create_or_update_revision(istio, revision_name, values)

        revisions = list_owned_revisions(self.store, istio)
        prune_result = self.pruner.prune(istio, revisions)
        return Result(requeue_after=prune_result.requeue_after)

    def _create_or_update_revision(self, istio: Istio, name: str, values: dict[str, Any]) -> None:
        spec = {
            "type": IstioRevisionType.LOCAL.value,
            "version": istio.spec.version,
            "namespace": istio.spec.namespace,
            "values": values,
        }
        try:
            existing = self.store.get(Kind.ISTIO_REVISION.value, name)
        except NotFoundError:
            owner = istio.owner_reference().model_dump(by_alias=True, exclude_none=True)
            self.store.create(
                Kind.ISTIO_REVISION.value,
                {
                    "apiVersion": istio.api_version,
                    "kind": Kind.ISTIO_REVISION.value,
                    "metadata": {"name": name, "ownerReferences": [owner]},
                    "spec": spec,
                },
            )
            return

        if existing.get("spec") != spec:
            existing["spec"] = spec
            self.store.update(Kind.ISTIO_REVISION.value, existing)

    def determine_status(
        self, istio: Istio, reconcile_err: Optional[BaseException]
    ) -> tuple[IstioStatus, Optional[BaseException]]:
        """
        Compute the status of an Istio.

        Returns:
            The new status, and the errors encountered while computing it
        """
        errs = ErrorList()
        status = istio.status.model_copy(deep=True)
        status.observed_generation = istio.metadata.generation or 0
        status.active_revision_name = active_revision_name(istio)

        try:
            status.revisions = summarize_revisions(list_owned_revisions(self.store, istio))
        except SailOperatorError as e:
            status.revisions = RevisionSummary(total=-1, ready=-1, in_use=-1)
            errs.add(e)

        if reconcile_err is not None:
            self._set_all(
                status,
                ConditionStatus.FALSE,
                IstioReason.RECONCILE_ERROR,
                str(reconcile_err),
                ConditionStatus.UNKNOWN,
                "cannot determine readiness due to reconciliation error",
            )
            status.state = IstioReason.RECONCILE_ERROR.value
            return status, errs.error()

        try:
            revision = IstioRevision.model_validate(
                self.store.get(Kind.ISTIO_REVISION.value, status.active_revision_name)
            )
        except NotFoundError:
            self._set_all(
                status,
                ConditionStatus.FALSE,
                IstioReason.REVISION_NOT_FOUND,
                "active IstioRevision not found",
                ConditionStatus.FALSE,
                "active IstioRevision not found",
            )
            status.state = IstioReason.REVISION_NOT_FOUND.value
            return status, errs.error()
        except SailOperatorError as e:
            message = f"failed to get active IstioRevision: {e}"
            self._set_all(
                status,
                ConditionStatus.UNKNOWN,
                IstioReason.FAILED_TO_GET_ACTIVE_REVISION,
                message,
                ConditionStatus.UNKNOWN,
                message,
            )
            status.state = IstioReason.FAILED_TO_GET_ACTIVE_REVISION.value
            errs.add(e)
            return status, errs.error()

        for condition_type in CONDITION_TYPE_TRANSLATION:
            revision_condition = get_condition(revision.status.conditions, condition_type)
            set_condition(status.conditions, translate_condition(revision_condition))
        status.state = translate_reason(revision.status.state)
        return status, errs.error()

    @staticmethod
    def _set_all(
        status: IstioStatus,
        reconciled_status: ConditionStatus,
        reason: IstioReason,
        reconciled_message: str,
        other_status: ConditionStatus,
        other_message: str,
    ) -> None:
        set_condition(
            status.conditions,
            Condition(
                type=ConditionType.RECONCILED.value,
                status=reconciled_status.value,
                reason=reason.value,
                message=reconciled_message,
            ),
        )
        for condition_type in (ConditionType.READY, ConditionType.DEPENDENCIES_HEALTHY):
            set_condition(
                status.conditions,
                Condition(
                    type=condition_type.value,
                    status=other_status.value,
                    reason=reason.value,
                    message=other_message,
                ),
            )

    def update_status(self, istio: Istio, reconcile_err: Optional[BaseException]) -> Optional[BaseException]:
        """
        Compute the status and write it if it changed.

        Returns:
            The errors encountered, if any
        """
        errs = ErrorList()
        status, err = self.determine_status(istio, reconcile_err)
        errs.add(err)

        if status != istio.status:
            try:
                self.store.patch_status(
                    Kind.ISTIO.value,
                    istio.name,
                    status.model_dump(by_alias=True, exclude_none=True, mode="json"),
                )
            except SailOperatorError as e:
                errs.add(e)
        return errs.error()
