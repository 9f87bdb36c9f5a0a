"""
Dashboard Reconciler - turns a dashboard resource into Grafana API calls.

Upserts run as a two-phase sequence: an attempt pass with the caller's
overwrite flag, then at most one retry pass with ``overwrite=True`` when
Grafana reports a version mismatch. Deletes are best-effort per document.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from dashboards import (
    DashboardDataError,
    DashboardResource,
    UpsertRequest,
    folder_title_for,
    parse_dashboard,
    prepare_dashboard,
    uid_for,
)
from grafana import FolderCreationError, GrafanaClient, GrafanaError

logger = logging.getLogger(__name__)

VERSION_MISMATCH = "version-mismatch"
NAME_EXISTS = "name-exists"


class UpsertOutcome(Enum):
    """Classification of a single dashboard upsert response."""

    APPLIED = "applied"
    VERSION_MISMATCH = "version_mismatch"
    NAME_EXISTS = "name_exists"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Result of reconciling one resource."""

    applied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    retried: bool = False
    error: Optional[str] = None


def classify_upsert(status: int, body: str) -> UpsertOutcome:
    """Map a Grafana upsert response onto an outcome."""
    if status == 200:
        return UpsertOutcome.APPLIED
    if status == 412:
        if VERSION_MISMATCH in body:
            return UpsertOutcome.VERSION_MISMATCH
        if NAME_EXISTS in body:
            return UpsertOutcome.NAME_EXISTS
    return UpsertOutcome.FAILED


class DashboardReconciler:
    """Applies dashboard resources to Grafana."""

    def __init__(self, client: GrafanaClient):
        self.client = client

    async def resolve_folder(self, title: str) -> int:
        """
        Return the id of the folder titled ``title``, creating it if absent.

        Raises:
            FolderCreationError: If Grafana created the folder without a
                usable id.
            GrafanaError: If listing or creating folders failed.
        """
        for folder in await self.client.list_folders():
            # Id 0 is General, never a custom folder
            if folder.title == title and folder.id != 0:
                return folder.id

        folder = await self.client.create_folder(title)
        if folder.id == 0:
            raise FolderCreationError(title, "Grafana returned folder id 0")

        logger.info(f"Created folder '{title}' with id {folder.id}")
        return folder.id

    async def upsert(
        self, resource: DashboardResource, overwrite: bool = False
    ) -> SyncResult:
        """
        Create or update every dashboard held by a resource.

        Args:
            resource: The managed resource to apply.
            overwrite: Whether Grafana should overwrite on version conflicts.

        Returns:
            A SyncResult describing the documents applied and skipped.
        """
        result = SyncResult()

        folder_id = 0
        title = folder_title_for(resource)
        if title is not None:
            try:
                folder_id = await self.resolve_folder(title)
            except GrafanaError as e:
                logger.error(f"Failed to get folder for {resource.key}: {e}")
                result.error = str(e)
                return result

        try:
            outcome = await self._submit(resource, folder_id, overwrite, result)
            if outcome is UpsertOutcome.VERSION_MISMATCH:
                logger.info(
                    f"Dashboard version mismatch for {resource.key}, "
                    f"retrying with overwrite"
                )
                result.retried = True
                result.applied.clear()
                result.skipped.clear()
                await self._submit(resource, folder_id, True, result)
        except DashboardDataError as e:
            logger.error(f"Failed to decode dashboards of {resource.key}: {e}")
            result.error = str(e)

        return result

    async def _submit(
        self,
        resource: DashboardResource,
        folder_id: int,
        overwrite: bool,
        result: SyncResult,
    ) -> Optional[UpsertOutcome]:
        """
        Submit each document of a resource once.

        Returns ``UpsertOutcome.VERSION_MISMATCH`` as soon as one is seen on
        a non-overwriting pass so the caller can retry the whole resource;
        otherwise returns ``None`` after every document was attempted.
        """
        for key, raw in resource.data.items():
            dashboard = prepare_dashboard(parse_dashboard(key, raw), resource)
            request = UpsertRequest(
                folder_id=folder_id, overwrite=overwrite, dashboard=dashboard
            )

            try:
                response = await self.client.upsert_dashboard(request)
            except GrafanaError as e:
                logger.error(f"Failed to create/update dashboard {key}: {e}")
                result.skipped.append(dashboard.uid)
                continue

            outcome = classify_upsert(response.status, response.text)
            if outcome is UpsertOutcome.APPLIED:
                logger.info(f"Dashboard {dashboard.uid} created/updated")
                result.applied.append(dashboard.uid)
            elif outcome is UpsertOutcome.VERSION_MISMATCH and not overwrite:
                return outcome
            elif outcome is UpsertOutcome.NAME_EXISTS:
                logger.info(f"The dashboard name already existed: {key}")
                result.skipped.append(dashboard.uid)
            else:
                logger.error(
                    f"Failed to create/update dashboard {key}: "
                    f"{response.status} {response.text}"
                )
                result.skipped.append(dashboard.uid)

        return None

    async def delete(self, resource: DashboardResource) -> SyncResult:
        """Delete every dashboard previously created for a resource."""
        result = SyncResult()

        for key, raw in resource.data.items():
            try:
                dashboard = parse_dashboard(key, raw)
            except DashboardDataError as e:
                logger.error(f"Failed to decode dashboard for deletion: {e}")
                result.error = str(e)
                continue

            uid = uid_for(dashboard, resource)
            try:
                response = await self.client.delete_dashboard(uid)
            except GrafanaError as e:
                logger.error(f"Failed to delete dashboard {uid} of {resource.key}: {e}")
                result.skipped.append(uid)
                continue

            if response.status != 200:
                logger.error(
                    f"Failed to delete dashboard {uid} of {resource.key}: "
                    f"{response.status}"
                )
                result.skipped.append(uid)
            else:
                logger.info(f"Dashboard {uid} deleted")
                result.applied.append(uid)

        return result
