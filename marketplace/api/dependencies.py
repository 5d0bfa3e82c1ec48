"""Shared FastAPI dependencies for marketplace routes."""

from fastapi import Request

from marketplace.adapters.repository.base import AbstractRepository, Record
from marketplace.adapters.repository.in_memory import Repositories
from marketplace.core.errors import NotFoundError
from marketplace.core.ownership import OwnershipGuard


def get_repositories(request: Request) -> Repositories:
    return request.app.state.repositories


def resource_not_found(resource: str, resource_id: str) -> NotFoundError:
    return NotFoundError(
        code=f"{resource}_not_found",
        message=f"{resource.capitalize()} not found.",
        details={"resource": resource, "resource_id": resource_id},
    )


async def load_record(repository: AbstractRepository, resource: str, record_id: str) -> Record:
    """Fetch a record or raise the matching NotFoundError."""
    record = await repository.get(record_id)
    if record is None:
        raise resource_not_found(resource, record_id)
    return record


class RecordOwnerLookup:
    """Owner lookup for records addressed by a path parameter.

    Args:
        collection: Attribute of ``Repositories`` holding the records.
        path_param: Path parameter carrying the record id.
        resource: Resource name used in errors and logs.
    """

    def __init__(self, collection: str, path_param: str, resource: str) -> None:
        self.collection = collection
        self.path_param = path_param
        self.resource = resource

    async def __call__(self, request: Request) -> str:
        repository: AbstractRepository = getattr(get_repositories(request), self.collection)
        record_id = request.path_params[self.path_param]
        record = await load_record(repository, self.resource, record_id)
        return record.owner_id


extension_owner = RecordOwnerLookup("extensions", "extension_id", "extension")
review_owner = RecordOwnerLookup("reviews", "review_id", "review")
installation_owner = RecordOwnerLookup("installations", "installation_id", "installation")

extension_guard = OwnershipGuard(extension_owner, resource="extension")
review_guard = OwnershipGuard(review_owner, resource="review")
installation_guard = OwnershipGuard(installation_owner, resource="installation")
