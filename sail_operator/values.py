"""Computation of the Helm values passed to the charts."""

import copy
import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from .config import OperatorConfig
from .errors import ValidationError
from .models import DEFAULT_REVISION, Platform

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "default"


def get_nested(values: Optional[dict[str, Any]], *path: str) -> Any:
    """Return the value at the given key path, or None if any step is missing."""
    current: Any = values
    for key in path:
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def set_nested(values: dict[str, Any], value: Any, *path: str) -> None:
    """Set a value at the given key path, creating intermediate maps."""
    current = values
    for key in path[:-1]:
        child = current.get(key)
        if not isinstance(child, dict):
            child = {}
            current[key] = child
        current = child
    current[path[-1]] = value


def merge_overwrite(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """
    Deep-merge overrides into base.

    Maps present on both sides are merged recursively; any other override
    value replaces the base value. base is modified and returned.
    """
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = merge_overwrite(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
    return base


def resolve_profiles(default_profile: str, user_profile: str) -> list[str]:
    """Return the profiles to apply, in order."""
    if user_profile and user_profile != DEFAULT_PROFILE:
        return [DEFAULT_PROFILE, user_profile]
    if default_profile and default_profile != DEFAULT_PROFILE:
        return [DEFAULT_PROFILE, default_profile]
    return [DEFAULT_PROFILE]


def read_profile_values(profiles_dir: Path, profile: str) -> dict[str, Any]:
    """
    Read the spec.values section of one profile file.

    Raises:
        ValidationError: If the profile name is empty or escapes the directory
        ValueError: If the file cannot be read or parsed
    """
    if not profile:
        raise ValidationError("profile name cannot be empty")
    file = profiles_dir / f"{profile}.yaml"
    if file.parent != profiles_dir or "/" in profile or profile in (".", ".."):
        raise ValidationError(f"invalid profile name {profile}")

    try:
        content = yaml.safe_load(file.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ValueError(f"failed to read profile file {file}: {e}") from e
    except yaml.YAMLError as e:
        raise ValueError(f"failed to unmarshal profile YAML {file}: {e}") from e

    profile_values = get_nested(content, "spec", "values")
    if profile_values is None:
        return {}
    if not isinstance(profile_values, dict):
        raise ValueError(f"spec.values in {file} is not a map")
    return profile_values


def apply_profiles(
    resource_dir: str,
    version: str,
    default_profile: str,
    user_profile: str,
    user_values: dict[str, Any],
) -> dict[str, Any]:
    """Merge profile values for the version, with user values on top."""
    profiles_dir = Path(resource_dir) / version / "profiles"
    values: dict[str, Any] = {}
    applied = set()
    for profile in resolve_profiles(default_profile, user_profile):
        if profile in applied:
            continue
        applied.add(profile)
        values = merge_overwrite(values, read_profile_values(profiles_dir, profile))
    return merge_overwrite(values, user_values)


def apply_image_digests(
    version: str, values: dict[str, Any], operator_config: OperatorConfig
) -> dict[str, Any]:
    """Pin control plane images for the version unless the user chose images."""
    digests = operator_config.image_digests.get(version)
    if digests is None:
        return values

    result = copy.deepcopy(values)
    if not (
        get_nested(result, "pilot", "image")
        or get_nested(result, "pilot", "hub")
        or get_nested(result, "pilot", "tag")
    ):
        set_nested(result, digests.istiod, "pilot", "image")
    if not get_nested(result, "global", "proxy", "image"):
        set_nested(result, digests.proxy, "global", "proxy", "image")
    if not get_nested(result, "global", "proxy_init", "image"):
        set_nested(result, digests.proxy, "global", "proxy_init", "image")
    return result


def apply_agent_image_digest(
    version: str,
    values: dict[str, Any],
    operator_config: OperatorConfig,
    component: str,
) -> dict[str, Any]:
    """
    Pin the image of a data plane agent chart.

    Args:
        version: Istio version
        values: Chart values
        operator_config: Operator configuration with image digests
        component: "cni" or "ztunnel"

    Returns:
        Values with the image set, if a digest exists and no image was chosen
    """
    digests = operator_config.image_digests.get(version)
    if digests is None:
        return values
    image = getattr(digests, component, "")
    result = copy.deepcopy(values)
    path = ("cni", "image") if component == "cni" else ("image",)
    if image and not (
        get_nested(result, *path)
        or get_nested(result, *path[:-1], "hub")
        or get_nested(result, *path[:-1], "tag")
    ):
        set_nested(result, image, *path)
    return result


def apply_platform(platform: Platform, values: dict[str, Any]) -> None:
    if platform == Platform.KUBERNETES:
        return
    if get_nested(values, "global", "platform") is None:
        set_nested(values, platform.value, "global", "platform")


def apply_overrides(revision_name: str, namespace: str, values: dict[str, Any]) -> None:
    """Set the values the user is not allowed to choose."""
    # The injector webhook only matches istio-injection=enabled when the revision is empty
    values["revision"] = "" if revision_name == DEFAULT_REVISION else revision_name
    set_nested(values, namespace, "global", "istioNamespace")


def compute_values(
    user_values: Optional[dict[str, Any]],
    namespace: str,
    version: str,
    platform: Platform,
    default_profile: str,
    user_profile: str,
    resource_dir: str,
    revision_name: str,
    operator_config: Optional[OperatorConfig] = None,
) -> dict[str, Any]:
    """
    Compute the final values for an istiod chart.

    Args:
        user_values: Values set in the resource spec
        namespace: Control plane namespace
        version: Istio version
        platform: Cluster platform
        default_profile: Operator-wide default profile
        user_profile: Profile chosen in the resource spec
        resource_dir: Directory with per-version charts and profiles
        revision_name: Name of the revision being installed
        operator_config: Image digests to apply

    Returns:
        The merged values

    Raises:
        ValidationError: If a profile name is invalid
        ValueError: If a profile cannot be read
    """
    values = apply_image_digests(version, user_values or {}, operator_config or OperatorConfig())
    try:
        merged = apply_profiles(resource_dir, version, default_profile, user_profile, values)
    except ValueError as e:
        raise ValueError(f"failed to apply profile: {e}") from e
    apply_platform(platform, merged)
    apply_overrides(revision_name, namespace, merged)
    logger.debug(f"Computed values for revision {revision_name} ({version})")
    return merged
