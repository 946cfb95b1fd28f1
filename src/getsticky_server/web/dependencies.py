# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
FastAPI dependencies for the HTTP and websocket interface.
"""

import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException
from starlette.requests import HTTPConnection

from ..config import Settings
from ..services.query_service import QueryOrchestrator
from ..storage.graph_store import GraphStore
from ..storage.settings_store import SettingsStore
from ..sync.dispatcher import MessageDispatcher
from ..sync.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Application collaborators, built once by the lifespan handler."""

    settings: Settings
    store: GraphStore
    settings_store: SettingsStore
    registry: ConnectionRegistry
    orchestrator: QueryOrchestrator
    dispatcher: MessageDispatcher


def get_services(connection: HTTPConnection) -> AppServices:
    """Get the application services for an HTTP request or websocket."""
    services = getattr(connection.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Server not initialized")
    return services


def require_bridge_client(
    connection: HTTPConnection,
    services: AppServices = Depends(get_services),
) -> None:
    """Only co-located processes may push notifications."""
    host = connection.client.host if connection.client else None
    if host not in services.settings.server.bridge_allowed_hosts:
        logger.warning(f"Rejected bridge request from {host}")
        raise HTTPException(status_code=403, detail="Notification bridge is only available to local clients")
