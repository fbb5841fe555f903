"""Generic record routes backing the admin tables."""

from __future__ import annotations

from typing import Any, Literal, Mapping

from fastapi import APIRouter, Body, Depends, Query, Response

from prepmint.api.dependencies import get_app_settings, get_backend, get_caller, get_session_provider
from prepmint.auth.capabilities import USERS_SOURCE, require_write
from prepmint.auth.session import SessionProvider
from prepmint.core.config import Settings
from prepmint.core.errors import PrepMintError
from prepmint.core.logging import get_logger
from prepmint.core.metrics import STORE_MUTATIONS
from prepmint.models.dto import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    DeleteOutcomeResponse,
    RecordCreateResponse,
    RecordPageResponse,
    RecordResponse,
)
from prepmint.models.entities import UserProfile
from prepmint.store.backends.base import Backend
from prepmint.store.query import build_query, parse_filter_expression

logger = get_logger(__name__)

router = APIRouter()


@router.get("/{source}", response_model=RecordPageResponse, summary="List one page of a source")
async def list_records(
    source: str,
    page_size: int | None = Query(default=None, gt=0, le=500),
    order_by: str = "created_at",
    direction: Literal["asc", "desc"] = "desc",
    cursor: str | None = None,
    search: str | None = None,
    search_fields: list[str] = Query(default=[]),
    filter: list[str] = Query(default=[]),
    backend: Backend = Depends(get_backend),
    settings: Settings = Depends(get_app_settings),
) -> RecordPageResponse:
    query = build_query(
        source,
        page_size=page_size or settings.page_size,
        order_by_field=order_by,
        order_direction=direction,
        filters=[parse_filter_expression(expression) for expression in filter],
        search_term=search,
        search_fields=search_fields,
        cursor=cursor,
    )
    page = await backend.select(query)
    return RecordPageResponse(
        items=[RecordResponse.from_record(record) for record in page.items],
        has_more=page.has_more,
        next_cursor=page.next_cursor,
        total=page.total,
    )


@router.get("/{source}/{record_id}", response_model=RecordResponse, summary="Fetch one record")
async def get_record(source: str, record_id: str, backend: Backend = Depends(get_backend)) -> RecordResponse:
    _check_source(source)
    return RecordResponse.from_record(await backend.get(source, record_id))


@router.post("/{source}", response_model=RecordCreateResponse, status_code=201, summary="Create a record")
async def create_record(
    source: str,
    fields: dict[str, Any] = Body(...),
    backend: Backend = Depends(get_backend),
    caller: UserProfile | None = Depends(get_caller),
) -> RecordCreateResponse:
    _check_source(source)
    await _authorize_write(backend, caller, source, changes=fields)
    record = await backend.insert(source, fields)
    STORE_MUTATIONS.labels(source, "add", "ok").inc()
    return RecordCreateResponse(id=record.id)


@router.patch("/{source}/{record_id}", response_model=RecordResponse, summary="Merge fields into a record")
async def update_record(
    source: str,
    record_id: str,
    fields: dict[str, Any] = Body(...),
    backend: Backend = Depends(get_backend),
    caller: UserProfile | None = Depends(get_caller),
    sessions: SessionProvider = Depends(get_session_provider),
) -> RecordResponse:
    _check_source(source)
    await _authorize_write(backend, caller, source, record_id=record_id, changes=fields)
    record = await backend.update(source, record_id, fields)
    STORE_MUTATIONS.labels(source, "update", "ok").inc()
    if source == USERS_SOURCE:
        sessions.invalidate(record_id)
    return RecordResponse.from_record(record)


@router.delete("/{source}/{record_id}", status_code=204, summary="Delete a record")
async def delete_record(
    source: str,
    record_id: str,
    backend: Backend = Depends(get_backend),
    caller: UserProfile | None = Depends(get_caller),
    sessions: SessionProvider = Depends(get_session_provider),
) -> Response:
    _check_source(source)
    await _authorize_write(backend, caller, source, record_id=record_id)
    await backend.delete(source, record_id)
    STORE_MUTATIONS.labels(source, "delete", "ok").inc()
    if source == USERS_SOURCE:
        sessions.invalidate(record_id)
    return Response(status_code=204)


@router.post("/{source}/bulk-delete", response_model=BulkDeleteResponse, summary="Delete many records")
async def bulk_delete_records(
    source: str,
    request: BulkDeleteRequest,
    backend: Backend = Depends(get_backend),
    caller: UserProfile | None = Depends(get_caller),
    sessions: SessionProvider = Depends(get_session_provider),
) -> BulkDeleteResponse:
    _check_source(source)
    if caller is None or source != USERS_SOURCE:
        require_write(caller, source)
    outcomes: list[DeleteOutcomeResponse] = []
    for record_id in request.ids:
        try:
            await _authorize_write(backend, caller, source, record_id=record_id)
            await backend.delete(source, record_id)
        except PrepMintError as exc:
            STORE_MUTATIONS.labels(source, "delete", "error").inc()
            logger.warning("Bulk delete of %s/%s failed: %s", source, record_id, exc.message)
            outcomes.append(DeleteOutcomeResponse(id=record_id, ok=False, error=exc.message))
        else:
            STORE_MUTATIONS.labels(source, "delete", "ok").inc()
            outcomes.append(DeleteOutcomeResponse(id=record_id, ok=True))
            if source == USERS_SOURCE:
                sessions.invalidate(record_id)
    succeeded = [outcome.id for outcome in outcomes if outcome.ok]
    failed = [outcome.id for outcome in outcomes if not outcome.ok]
    return BulkDeleteResponse(
        succeeded=succeeded,
        failed=failed,
        outcomes=outcomes,
        summary=f"{len(succeeded)} of {len(outcomes)} succeeded",
    )


def _check_source(source: str) -> None:
    build_query(source)


async def _authorize_write(
    backend: Backend,
    caller: UserProfile | None,
    source: str,
    *,
    record_id: str | None = None,
    changes: Mapping[str, Any] | None = None,
) -> None:
    """Check the caller against every role a ``users`` write touches."""
    if caller is None or source != USERS_SOURCE:
        require_write(caller, source)
        return
    roles: list[str | None] = []
    if record_id is not None:
        existing = await backend.get(source, record_id)
        roles.append(existing.fields.get("role"))
    if changes is not None and (record_id is None or "role" in changes):
        roles.append(changes.get("role"))
    require_write(caller, source, roles=roles)


__all__ = ["router"]
