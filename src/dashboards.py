"""
Dashboard resources and documents.

A dashboard resource is a ConfigMap carrying one or more Grafana dashboard
JSON documents in its data. This module holds the typed view of those
ConfigMaps, the selection predicate deciding which of them are managed,
and the deterministic uid derivation used when a document has none.
"""

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

CUSTOM_DASHBOARD_LABEL = "grafana-custom-dashboard"
GENERAL_FOLDER_LABEL = "general-folder"
FOLDER_ANNOTATION = "observability.open-cluster-management.io/dashboard-folder"
MANAGED_NAME_FRAGMENT = "grafana-dashboard"
MANAGED_OWNER_KIND = "MultiClusterObservability"
DEFAULT_FOLDER_TITLE = "Custom"

# Grafana rejects dashboard uids longer than 40 characters
MAX_UID_LENGTH = 40


class DashboardDataError(ValueError):
    """Raised when a dashboard payload cannot be decoded."""

    def __init__(self, key: str, message: str):
        self.key = key
        self.message = message
        super().__init__(f"Invalid dashboard data in '{key}': {message}")


@dataclass
class OwnerReference:
    """Owner of a dashboard resource."""

    name: str
    kind: str


@dataclass
class DashboardResource:
    """Snapshot of an observed dashboard ConfigMap."""

    name: str
    namespace: str
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    data: Dict[str, str] = field(default_factory=dict)
    owner_references: List[OwnerReference] = field(default_factory=list)

    @property
    def key(self) -> str:
        """Identity of the resource within the cluster."""
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_config_map(cls, config_map: Any) -> "DashboardResource":
        """
        Build a resource from a kubernetes client ``V1ConfigMap``.

        Args:
            config_map: ConfigMap object returned by the CoreV1 API.

        Returns:
            A new DashboardResource instance.
        """
        metadata = config_map.metadata
        owners = [
            OwnerReference(name=owner.name, kind=owner.kind)
            for owner in (metadata.owner_references or [])
        ]
        return cls(
            name=metadata.name,
            namespace=metadata.namespace or "",
            labels=dict(metadata.labels or {}),
            annotations=dict(metadata.annotations or {}),
            data=dict(config_map.data or {}),
            owner_references=owners,
        )


class DashboardDocument(BaseModel):
    """
    A Grafana dashboard definition.

    Only ``uid`` and ``id`` are interpreted. All other fields are kept as
    extra fields in their original order and passed through untouched.
    """

    model_config = ConfigDict(extra="allow")

    uid: Optional[str] = None
    id: Optional[Any] = None


class Folder(BaseModel):
    """A Grafana folder. Id 0 is the built-in General folder."""

    model_config = ConfigDict(extra="ignore")

    id: int
    title: str


class UpsertRequest(BaseModel):
    """Body of ``POST /api/dashboards/db``."""

    folder_id: int = Field(0, alias="folderId")
    overwrite: bool = False
    dashboard: DashboardDocument

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        """Return the JSON body sent to Grafana."""
        return {
            "folderId": self.folder_id,
            "overwrite": self.overwrite,
            "dashboard": self.dashboard.model_dump(),
        }


def derive_uid(name: str, namespace: str) -> str:
    """
    Derive a stable dashboard uid from a resource's name and namespace.

    The '/' separator cannot appear in Kubernetes names, so distinct
    (name, namespace) pairs never hash the same input.
    """
    digest = hashlib.sha256(f"{namespace}/{name}".encode("utf-8")).hexdigest()
    return digest[:MAX_UID_LENGTH]


def is_managed(resource: DashboardResource) -> bool:
    """Return True if the resource holds dashboards this loader must sync."""
    if resource.labels.get(CUSTOM_DASHBOARD_LABEL, "").lower() == "true":
        return True

    if MANAGED_NAME_FRAGMENT in resource.name:
        return any(
            owner.kind == MANAGED_OWNER_KIND for owner in resource.owner_references
        )

    return False


def folder_title_for(resource: DashboardResource) -> Optional[str]:
    """
    Return the folder title a resource's dashboards belong in.

    Returns ``None`` when the resource asks for Grafana's general folder,
    in which case no folder needs resolving.
    """
    if resource.labels.get(GENERAL_FOLDER_LABEL, "").lower() == "true":
        return None

    title = resource.annotations.get(FOLDER_ANNOTATION)
    if not title:
        title = DEFAULT_FOLDER_TITLE
    return title


def parse_dashboard(key: str, raw: str) -> DashboardDocument:
    """
    Decode one ``data`` entry into a dashboard document.

    Raises:
        DashboardDataError: If the entry is not a JSON object or its uid
            is not a string.
    """
    try:
        return DashboardDocument.model_validate_json(raw)
    except ValidationError as e:
        raise DashboardDataError(key, str(e)) from e


def prepare_dashboard(
    document: DashboardDocument, resource: DashboardResource
) -> DashboardDocument:
    """Inject a derived uid when missing and clear the numeric id."""
    if not document.uid:
        document.uid = derive_uid(resource.name, resource.namespace)
    document.id = None
    return document


def uid_for(document: DashboardDocument, resource: DashboardResource) -> str:
    """Return the uid a document was (or would be) stored under."""
    return document.uid or derive_uid(resource.name, resource.namespace)
