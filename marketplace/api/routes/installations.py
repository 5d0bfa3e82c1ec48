"""Extension installation routes."""

from __future__ import annotations

import logging
from typing import Annotated, List

from fastapi import APIRouter, Depends, Response, status

from marketplace.adapters.repository.in_memory import Repositories
from marketplace.api.dependencies import get_repositories, installation_guard, load_record
from marketplace.api.routing import GatedRoute
from marketplace.core.auth import Principal, require_principal
from marketplace.schemas.resources import (
    InstallationCreate,
    InstallationStatus,
    InstallationUpdate,
    RecordResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Installations"], route_class=GatedRoute)


@router.get("/installations", response_model=List[RecordResponse])
async def list_my_installations(
    principal: Annotated[Principal, Depends(require_principal)],
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> List[RecordResponse]:
    records = await repositories.installations.list(owner_id=principal.id)
    return [RecordResponse.from_record(record) for record in records]


@router.post(
    "/extensions/{extension_id}/installations",
    response_model=RecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def install_extension(
    extension_id: str,
    payload: InstallationCreate,
    principal: Annotated[Principal, Depends(require_principal)],
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> RecordResponse:
    extension = await load_record(repositories.extensions, "extension", extension_id)
    data = {
        "version": payload.version or extension.data.get("latest_version"),
        "status": InstallationStatus.PENDING.value,
    }
    record = await repositories.installations.create(principal.id, data, parent_id=extension_id)
    logger.info(
        "installation.created",
        extra={"installation_id": record.id, "extension_id": extension_id, "principal_id": principal.id},
    )
    return RecordResponse.from_record(record)


@router.patch("/installations/{installation_id}", response_model=RecordResponse)
async def update_installation(
    installation_id: str,
    payload: InstallationUpdate,
    principal: Annotated[Principal, Depends(installation_guard)],
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> RecordResponse:
    record = await repositories.installations.update(installation_id, payload.model_dump(mode="json"))
    if record is None:
        record = await load_record(repositories.installations, "installation", installation_id)
    logger.info(
        "installation.updated",
        extra={"installation_id": installation_id, "status": payload.status.value, "principal_id": principal.id},
    )
    return RecordResponse.from_record(record)


@router.delete("/installations/{installation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def uninstall_extension(
    installation_id: str,
    principal: Annotated[Principal, Depends(installation_guard)],
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> Response:
    if not await repositories.installations.delete(installation_id):
        await load_record(repositories.installations, "installation", installation_id)
    logger.info(
        "installation.deleted",
        extra={"installation_id": installation_id, "principal_id": principal.id},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
