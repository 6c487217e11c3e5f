"""
Projects API
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body

from .gateway import GatewayDep, respond

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.post("")
def create_project(gateway: GatewayDep, payload: Annotated[Any, Body()] = None):
    return respond(gateway.run(gateway.create_project, payload))


@router.get("")
def list_projects(gateway: GatewayDep):
    return respond(gateway.run(gateway.list_projects))


@router.get("/{project_id}")
def get_project(project_id: str, gateway: GatewayDep):
    return respond(gateway.run(gateway.get_project, project_id))


@router.patch("/{project_id}")
def update_project(project_id: str, gateway: GatewayDep, payload: Annotated[Any, Body()] = None):
    return respond(gateway.run(gateway.update_project, project_id, payload))
