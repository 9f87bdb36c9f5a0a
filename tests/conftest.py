"""Pytest configuration and fixtures."""

import json
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from config import GrafanaConfig
from dashboards import DashboardResource, OwnerReference
from grafana import GrafanaClient


class FakeGrafana:
    """In-memory stand-in for the Grafana folder and dashboard API."""

    def __init__(self):
        self.base_url = ""
        self.folders: List[Dict[str, Any]] = []
        self.dashboards: Dict[str, Dict[str, Any]] = {}
        self.requests: List[Tuple[str, str, Optional[Dict[str, Any]]]] = []
        self.headers: List[Dict[str, str]] = []
        # Queued (status, body) replies for upserts, consumed before defaults
        self.upsert_replies: List[Tuple[int, str]] = []
        # Number of upcoming requests (of any kind) answered with a 500
        self.fail_next = 0
        self.created_folder_id: Optional[int] = None
        self.folders_body: Optional[str] = None
        self._next_folder_id = 1

    def app(self) -> web.Application:
        app = web.Application(middlewares=[self._record])
        app.router.add_get("/api/folders", self.list_folders)
        app.router.add_post("/api/folders", self.create_folder)
        app.router.add_post("/api/dashboards/db", self.upsert_dashboard)
        app.router.add_delete("/api/dashboards/uid/{uid}", self.delete_dashboard)
        return app

    @web.middleware
    async def _record(self, request, handler):
        body = None
        if request.can_read_body:
            body = json.loads(await request.text())
        self.requests.append((request.method, request.path, body))
        self.headers.append(dict(request.headers))
        if self.fail_next > 0:
            self.fail_next -= 1
            return web.Response(status=500, text="internal error")
        return await handler(request)

    def calls(self, method: str, path: Optional[str] = None):
        return [
            r
            for r in self.requests
            if r[0] == method and (path is None or r[1] == path)
        ]

    async def list_folders(self, request):
        if self.folders_body is not None:
            return web.Response(text=self.folders_body, content_type="application/json")
        return web.json_response(self.folders)

    async def create_folder(self, request):
        body = await request.json()
        folder_id = self._next_folder_id
        self._next_folder_id += 1
        if self.created_folder_id is not None:
            folder_id = self.created_folder_id
        folder = {"id": folder_id, "uid": f"folder{folder_id}", "title": body["title"]}
        self.folders.append(folder)
        return web.json_response(folder)

    async def upsert_dashboard(self, request):
        body = await request.json()
        if self.upsert_replies:
            status, text = self.upsert_replies.pop(0)
            return web.Response(status=status, text=text)
        uid = body["dashboard"]["uid"]
        self.dashboards[uid] = body
        return web.json_response({"status": "success", "uid": uid, "version": 1})

    async def delete_dashboard(self, request):
        uid = request.match_info["uid"]
        if uid not in self.dashboards:
            return web.json_response({"message": "Dashboard not found"}, status=404)
        del self.dashboards[uid]
        return web.json_response({"title": uid, "message": "Dashboard deleted"})


@pytest_asyncio.fixture
async def grafana():
    """Start a fake Grafana server for the duration of a test."""
    fake = FakeGrafana()
    server = TestServer(fake.app())
    await server.start_server()
    fake.base_url = f"http://{server.host}:{server.port}"
    yield fake
    await server.close()


@pytest.fixture
def grafana_client(grafana):
    """Client pointed at the fake Grafana with a small, instant retry budget."""
    return GrafanaClient(
        GrafanaConfig(base_url=grafana.base_url, retry=3, retry_delay=0, timeout=5)
    )


@pytest.fixture
def custom_resource():
    """A dashboard ConfigMap selected through the custom dashboard label."""
    return DashboardResource(
        name="acme-grafana-dashboard",
        namespace="ns1",
        labels={"grafana-custom-dashboard": "true"},
        data={"d1": '{"title":"A"}'},
    )


@pytest.fixture
def owned_resource():
    """A dashboard ConfigMap selected through its MultiClusterObservability owner."""
    return DashboardResource(
        name="grafana-dashboard-cluster-overview",
        namespace="open-cluster-management-observability",
        data={"cluster-overview.json": '{"uid":"overview","title":"Overview"}'},
        owner_references=[
            OwnerReference(name="observability", kind="MultiClusterObservability")
        ],
    )
