"""Extension and extension version routes."""

from __future__ import annotations

import logging
from typing import Annotated, List

from fastapi import APIRouter, Depends, Response, status

from marketplace.adapters.repository.in_memory import Repositories
from marketplace.api.dependencies import extension_guard, get_repositories, load_record
from marketplace.api.routing import GatedRoute, rate_limited
from marketplace.core.auth import Principal, require_principal
from marketplace.schemas.resources import (
    ExtensionCreate,
    ExtensionStatus,
    ExtensionUpdate,
    RecordResponse,
    VersionCreate,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/extensions", tags=["Extensions"], route_class=GatedRoute)


@router.get("", response_model=List[RecordResponse])
@rate_limited("api_key")
async def list_extensions(
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> List[RecordResponse]:
    records = await repositories.extensions.list()
    return [RecordResponse.from_record(record) for record in records]


@router.post("", response_model=RecordResponse, status_code=status.HTTP_201_CREATED)
async def create_extension(
    payload: ExtensionCreate,
    principal: Annotated[Principal, Depends(require_principal)],
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> RecordResponse:
    data = payload.model_dump()
    data["status"] = ExtensionStatus.DRAFT.value
    record = await repositories.extensions.create(principal.id, data)
    logger.info(
        "extension.created",
        extra={"extension_id": record.id, "principal_id": principal.id},
    )
    return RecordResponse.from_record(record)


@router.get("/{extension_id}", response_model=RecordResponse)
async def get_extension(
    extension_id: str,
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> RecordResponse:
    record = await load_record(repositories.extensions, "extension", extension_id)
    return RecordResponse.from_record(record)


@router.patch("/{extension_id}", response_model=RecordResponse)
async def update_extension(
    extension_id: str,
    payload: ExtensionUpdate,
    principal: Annotated[Principal, Depends(extension_guard)],
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> RecordResponse:
    changes = payload.model_dump(exclude_unset=True, mode="json")
    record = await repositories.extensions.update(extension_id, changes)
    if record is None:
        # Deleted between the ownership check and the update
        record = await load_record(repositories.extensions, "extension", extension_id)

    logger.info(
        "extension.updated",
        extra={"extension_id": extension_id, "principal_id": principal.id, "fields": sorted(changes)},
    )
    return RecordResponse.from_record(record)


@router.delete("/{extension_id}", status_code=status.HTTP_204_NO_CONTENT)
@rate_limited("strict")
async def delete_extension(
    extension_id: str,
    principal: Annotated[Principal, Depends(extension_guard)],
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> Response:
    if not await repositories.extensions.delete(extension_id):
        await load_record(repositories.extensions, "extension", extension_id)

    logger.info(
        "extension.deleted",
        extra={"extension_id": extension_id, "principal_id": principal.id},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{extension_id}/versions",
    response_model=RecordResponse,
    status_code=status.HTTP_201_CREATED,
)
@rate_limited("upload")
async def publish_version(
    extension_id: str,
    payload: VersionCreate,
    principal: Annotated[Principal, Depends(extension_guard)],
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> RecordResponse:
    record = await repositories.versions.create(
        principal.id,
        payload.model_dump(),
        parent_id=extension_id,
    )
    await repositories.extensions.update(extension_id, {"latest_version": payload.version})
    logger.info(
        "extension.version_published",
        extra={"extension_id": extension_id, "version": payload.version, "principal_id": principal.id},
    )
    return RecordResponse.from_record(record)


@router.get("/{extension_id}/versions", response_model=List[RecordResponse])
async def list_versions(
    extension_id: str,
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> List[RecordResponse]:
    await load_record(repositories.extensions, "extension", extension_id)
    records = await repositories.versions.list(parent_id=extension_id)
    return [RecordResponse.from_record(record) for record in records]
