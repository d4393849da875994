"""Controller for IstioRevisionTag resources."""

import copy
import logging
from typing import Any, Optional

from ..conditions import derive_state, set_condition
from ..config import ReconcilerConfig
from ..constants import BASE_CHART_NAME, FINALIZER_NAME, REVISION_TAGS_CHART_NAME
from ..errors import (
    ErrorList,
    NameAlreadyExistsError,
    NotFoundError,
    ReferenceNotFoundError,
    SailOperatorError,
    TransientError,
    ValidationError,
)
from ..helm import Installer
from ..models import (
    DEFAULT_REVISION_TAG,
    Condition,
    ConditionStatus,
    ConditionType,
    Istio,
    IstioRevision,
    IstioRevisionTag,
    IstioRevisionTagReason,
    IstioRevisionTagStatus,
    IstioRevisionType,
    Kind,
)
from ..reconciler import Result, StandardReconciler, handle_reconcile_error
from ..store import ResourceStore
from ..usage import UsageDetector
from ..validation import resource_takes_precedence

logger = logging.getLogger(__name__)


def revision_tags_release_name(tag: IstioRevisionTag) -> str:
    return f"{tag.name}-{REVISION_TAGS_CHART_NAME}"


def base_release_name(tag: IstioRevisionTag) -> str:
    return f"{tag.name}-{BASE_CHART_NAME}"


def resolve_target_revision(store: ResourceStore, tag: IstioRevisionTag) -> IstioRevision:
    """
    Resolve the revision a tag points at.

    An Istio target resolves to its active revision.

    Raises:
        NotFoundError: If the target or the revision does not exist
        TransientError: If the target Istio has no active revision yet
        ValidationError: If the target kind is unknown
    """
    ref = tag.spec.target_ref
    if ref.kind == Kind.ISTIO_REVISION.value:
        revision_name = ref.name
    elif ref.kind == Kind.ISTIO.value:
        istio = Istio.model_validate(store.get(Kind.ISTIO.value, ref.name))
        if not istio.status.active_revision_name:
            raise TransientError("referenced Istio has no active revision")
        revision_name = istio.status.active_revision_name
    else:
        raise ValidationError("unknown targetRef.kind")
    return IstioRevision.model_validate(store.get(Kind.ISTIO_REVISION.value, revision_name))


class IstioRevisionTagController:
    """Installs revision tags and tracks whether workloads use them."""

    def __init__(self, store: ResourceStore, installer: Installer, config: ReconcilerConfig):
        self.store = store
        self.installer = installer
        self.config = config
        self.usage = UsageDetector(store)
        self.reconciler = StandardReconciler(
            store,
            Kind.ISTIO_REVISION_TAG.value,
            self.do_reconcile,
            self.finalize,
            FINALIZER_NAME,
        )

    def reconcile(self, name: str) -> Result:
        return self.reconciler.reconcile(name)

    def do_reconcile(self, obj: dict[str, Any]) -> Result:
        tag = IstioRevisionTag.model_validate(obj)
        logger.info(f"Reconciling IstioRevisionTag {tag.name}")

        revision = None
        reconcile_err = None
        try:
            revision = self._do_reconcile(tag)
        except SailOperatorError as e:
            reconcile_err = e

        errs = ErrorList()
        errs.add(reconcile_err)
        errs.add(self.update_status(tag, revision, reconcile_err))
        logger.info(f"Reconciliation of IstioRevisionTag {tag.name} done")
        return handle_reconcile_error(errs.error(), Result())

    def finalize(self, obj: dict[str, Any]) -> None:
        tag = IstioRevisionTag.model_validate(obj)
        self._uninstall(tag, tag.status.istiod_namespace)

    def _uninstall(self, tag: IstioRevisionTag, namespace: str) -> None:
        if namespace:
            self.installer.uninstall(revision_tags_release_name(tag), namespace)
        if tag.name == DEFAULT_REVISION_TAG:
            self.installer.uninstall(base_release_name(tag), self.config.operator_namespace)

    def _validate(self, tag: IstioRevisionTag) -> None:
        ref = tag.spec.target_ref
        if not ref.kind or not ref.name:
            raise ValidationError("spec.targetRef not set")

        try:
            obj = self.store.get(Kind.ISTIO_REVISION.value, tag.name)
        except NotFoundError:
            pass
        else:
            revision = IstioRevision.model_validate(obj)
            if not resource_takes_precedence(tag.metadata, revision.metadata):
                raise NameAlreadyExistsError("there is an IstioRevision with this name")

        if ref.kind not in (Kind.ISTIO.value, Kind.ISTIO_REVISION.value):
            raise ValidationError("unknown targetRef.kind")
        try:
            self.store.get(ref.kind, ref.name)
        except NotFoundError:
            raise ReferenceNotFoundError(f"referenced {ref.kind} not found") from None
        except SailOperatorError as e:
            raise ValidationError(f"failed to get referenced {ref.kind}: {e}", cause=e) from e

    def _do_reconcile(self, tag: IstioRevisionTag) -> IstioRevision:
        self._validate(tag)

        revision = resolve_target_revision(self.store, tag)
        if revision.spec.type == IstioRevisionType.REMOTE:
            raise ValidationError("IstioRevisionTag cannot reference a remote IstioRevision")

        previous_namespace = tag.status.istiod_namespace
        if previous_namespace and previous_namespace != revision.spec.namespace:
            logger.info(f"IstioRevisionTag {tag.name} moved from namespace {previous_namespace}, uninstalling")
            self.installer.uninstall(revision_tags_release_name(tag), previous_namespace)

        values = copy.deepcopy(revision.spec.values or {})
        values["revisionTags"] = [tag.name]
        owner = tag.owner_reference()
        charts_dir = f"{self.config.resource_directory}/{revision.spec.version}/charts"

        self.installer.upgrade_or_install(
            f"{charts_dir}/{REVISION_TAGS_CHART_NAME}",
            values,
            revision.spec.namespace,
            revision_tags_release_name(tag),
            owner,
        )
        if tag.name == DEFAULT_REVISION_TAG:
            self.installer.upgrade_or_install(
                f"{charts_dir}/{BASE_CHART_NAME}",
                values,
                self.config.operator_namespace,
                base_release_name(tag),
                owner,
            )
        return revision

    def _reconciled_condition(self, reconcile_err: Optional[BaseException]) -> Condition:
        if reconcile_err is None:
            return Condition(type=ConditionType.RECONCILED.value, status=ConditionStatus.TRUE.value)
        if isinstance(reconcile_err, NameAlreadyExistsError):
            reason = IstioRevisionTagReason.NAME_ALREADY_EXISTS.value
            message = str(reconcile_err)
        elif isinstance(reconcile_err, ReferenceNotFoundError):
            reason = IstioRevisionTagReason.REFERENCE_NOT_FOUND.value
            message = str(reconcile_err)
        else:
            reason = IstioRevisionTagReason.RECONCILE_ERROR.value
            message = f"error reconciling resource: {reconcile_err}"
        return Condition(
            type=ConditionType.RECONCILED.value,
            status=ConditionStatus.FALSE.value,
            reason=reason,
            message=message,
        )

    def _in_use_condition(
        self, tag: IstioRevisionTag, revision: Optional[IstioRevision]
    ) -> tuple[Condition, Optional[Exception]]:
        try:
            in_use = self.usage.is_tag_in_use(
                tag, lambda: revision if revision is not None else resolve_target_revision(self.store, tag)
            )
        except SailOperatorError as e:
            return Condition(
                type=ConditionType.IN_USE.value,
                status=ConditionStatus.UNKNOWN.value,
                reason=IstioRevisionTagReason.USAGE_CHECK_FAILED.value,
                message=f"failed to determine if revision tag is in use: {e}",
            ), e
        if in_use:
            return Condition(
                type=ConditionType.IN_USE.value,
                status=ConditionStatus.TRUE.value,
                reason=IstioRevisionTagReason.REFERENCED_BY_WORKLOADS.value,
                message="Referenced by at least one pod or namespace",
            ), None
        return Condition(
            type=ConditionType.IN_USE.value,
            status=ConditionStatus.FALSE.value,
            reason=IstioRevisionTagReason.NOT_REFERENCED.value,
            message="Not referenced by any pod or namespace",
        ), None

    def determine_status(
        self,
        tag: IstioRevisionTag,
        revision: Optional[IstioRevision],
        reconcile_err: Optional[BaseException],
    ) -> tuple[IstioRevisionTagStatus, Optional[BaseException]]:
        errs = ErrorList()
        status = tag.status.model_copy(deep=True)
        status.observed_generation = tag.metadata.generation or 0
        if revision is not None:
            status.istio_revision = revision.name
            status.istiod_namespace = revision.spec.namespace

        reconciled = self._reconciled_condition(reconcile_err)
        in_use, err = self._in_use_condition(tag, revision)
        errs.add(err)

        set_condition(status.conditions, reconciled)
        set_condition(status.conditions, in_use)
        status.state = derive_state(reconciled, in_use)
        return status, errs.error()

    def update_status(
        self,
        tag: IstioRevisionTag,
        revision: Optional[IstioRevision],
        reconcile_err: Optional[BaseException],
    ) -> Optional[BaseException]:
        errs = ErrorList()
        status, err = self.determine_status(tag, revision, reconcile_err)
        errs.add(err)

        if status != tag.status:
            try:
                self.store.patch_status(
                    Kind.ISTIO_REVISION_TAG.value,
                    tag.name,
                    status.model_dump(by_alias=True, exclude_none=True, mode="json"),
                )
            except SailOperatorError as e:
                errs.add(e)
        return errs.error()
