"""Well-known labels, annotations and names used by the sail operator."""

# Injection labels and annotations on namespaces and pods
ISTIO_REV_LABEL = "istio.io/rev"
ISTIO_INJECTION_LABEL = "istio-injection"
ISTIO_INJECTION_ENABLED_VALUE = "enabled"
ISTIO_SIDECAR_INJECT_LABEL = "sidecar.istio.io/inject"

# Operator bookkeeping
FINALIZER_NAME = "sailoperator.io/sail-operator"
IGNORE_ANNOTATION = "sailoperator.io/ignore"
MANAGED_BY_LABEL_KEY = "managed-by"
MANAGED_BY_LABEL_VALUE = "sail-operator"

# Written by the remote readiness prober onto the injection webhook config
WEBHOOK_READINESS_PROBE_STATUS_ANNOTATION = "sailoperator.io/readinessProbeStatus"

# Chart names
ISTIOD_CHART_NAME = "istiod"
ISTIOD_REMOTE_CHART_NAME = "istiod-remote"
REVISION_TAGS_CHART_NAME = "revisiontags"
BASE_CHART_NAME = "base"
CNI_CHART_NAME = "cni"
ZTUNNEL_CHART_NAME = "ztunnel"

DEFAULT_ISTIO_NAMESPACE = "istio-system"
