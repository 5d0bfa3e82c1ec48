"""Extension review routes."""

from __future__ import annotations

import logging
from typing import Annotated, List

from fastapi import APIRouter, Depends, Response, status

from marketplace.adapters.repository.in_memory import Repositories
from marketplace.api.dependencies import get_repositories, load_record, review_guard
from marketplace.api.routing import GatedRoute
from marketplace.core.auth import Principal, require_principal
from marketplace.schemas.resources import RecordResponse, ReviewCreate, ReviewUpdate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Reviews"], route_class=GatedRoute)


@router.get("/extensions/{extension_id}/reviews", response_model=List[RecordResponse])
async def list_reviews(
    extension_id: str,
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> List[RecordResponse]:
    await load_record(repositories.extensions, "extension", extension_id)
    records = await repositories.reviews.list(parent_id=extension_id)
    return [RecordResponse.from_record(record) for record in records]


@router.post(
    "/extensions/{extension_id}/reviews",
    response_model=RecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_review(
    extension_id: str,
    payload: ReviewCreate,
    principal: Annotated[Principal, Depends(require_principal)],
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> RecordResponse:
    await load_record(repositories.extensions, "extension", extension_id)
    record = await repositories.reviews.create(principal.id, payload.model_dump(), parent_id=extension_id)
    logger.info(
        "review.created",
        extra={"review_id": record.id, "extension_id": extension_id, "principal_id": principal.id},
    )
    return RecordResponse.from_record(record)


@router.patch("/reviews/{review_id}", response_model=RecordResponse)
async def update_review(
    review_id: str,
    payload: ReviewUpdate,
    principal: Annotated[Principal, Depends(review_guard)],
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> RecordResponse:
    record = await repositories.reviews.update(review_id, payload.model_dump(exclude_unset=True))
    if record is None:
        record = await load_record(repositories.reviews, "review", review_id)
    logger.info("review.updated", extra={"review_id": review_id, "principal_id": principal.id})
    return RecordResponse.from_record(record)


@router.delete("/reviews/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_review(
    review_id: str,
    principal: Annotated[Principal, Depends(review_guard)],
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> Response:
    if not await repositories.reviews.delete(review_id):
        await load_record(repositories.reviews, "review", review_id)
    logger.info("review.deleted", extra={"review_id": review_id, "principal_id": principal.id})
    return Response(status_code=status.HTTP_204_NO_CONTENT)
