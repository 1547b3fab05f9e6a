import hashlib
import json

from fastapi import APIRouter, Depends, Request, Response, status as http_status
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError

from directory_api.core.config import Settings, get_settings
from directory_api.core.errors import ErrorCode, invalid_params, not_found, unavailable
from directory_api.services.agency_query import AgenciesQuery
from directory_api.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    get_repository,
)

router = APIRouter()


def _cache_headers(settings: Settings, etag: str) -> dict[str, str]:
    return {
        "Cache-Control": f"public, max-age={settings.agencies_cache_max_age_seconds}, must-revalidate",
        "ETag": etag,
    }


@router.get("")
async def search_agencies(
    request: Request,
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> Response:
    try:
        query = AgenciesQuery.model_validate(request.query_params)
    except ValidationError as exc:
        raise invalid_params(exc) from exc

    try:
        rows, total = await repository.search_agencies(
            search=query.search,
            trade_slugs=query.trades,
            state_codes=query.states,
            limit=query.limit,
            offset=query.offset,
        )
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc

    body = jsonable_encoder(
        {
            "data": rows,
            "pagination": {
                "total": total,
                "limit": query.limit,
                "offset": query.offset,
                "hasMore": query.offset + query.limit < total,
            },
        }
    )
    raw = json.dumps(body, separators=(",", ":"))
    etag = f'"{hashlib.md5(raw.encode("utf-8")).hexdigest()}"'
    headers = _cache_headers(settings, etag)

    if request.headers.get("if-none-match") == etag:
        return Response(status_code=http_status.HTTP_304_NOT_MODIFIED, headers=headers)
    return Response(content=raw, media_type="application/json", headers=headers)


@router.get("/{slug}")
async def get_agency(slug: str, repository=Depends(get_repository)) -> dict:
    try:
        agency = await repository.get_agency_by_slug(slug)
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise not_found("Agency not found", ErrorCode.AGENCY_NOT_FOUND) from exc
    agency.pop("claimed_by", None)
    return {"data": agency}
