import json

from fastapi import Depends, Request
from fastapi.responses import JSONResponse

from dao_radar.data_models.api_schemas import SummarizeRequest, SummarizeResponse
from dao_radar.exceptions import InvalidInputError
from dao_radar.routers.deps import get_app_context
from dao_radar.services.context import AppContext
from dao_radar.services.rpc_proxy import client_ip_from_headers

REGISTRY_CACHE_CONTROL = "public, max-age=3600, stale-while-revalidate=600"


async def get_registry(ctx: AppContext = Depends(get_app_context)) -> JSONResponse:
    """The normalised realm registry, camelCase as published upstream."""
    entries = await ctx.registry.get_all()
    return JSONResponse(
        content=[entry.model_dump(mode="json", by_alias=True, exclude_none=True) for entry in entries],
        headers={"Cache-Control": REGISTRY_CACHE_CONTROL},
    )


async def post_rpc(request: Request, ctx: AppContext = Depends(get_app_context)) -> JSONResponse:
    client_ip = client_ip_from_headers(
        request.headers.get("x-forwarded-for"),
        request.client.host if request.client else None,
    )
    # Admission happens before the body is read
    ctx.rpc_proxy.admit(client_ip)
    try:
        body = json.loads(await request.body())
    except ValueError as e:
        raise InvalidInputError("Invalid RPC request") from e
    data = await ctx.rpc_proxy.relay(body)
    return JSONResponse(content=data)


async def post_summarize(request: SummarizeRequest, ctx: AppContext = Depends(get_app_context)) -> SummarizeResponse:
    return await ctx.summarizer.summarize(request.title, request.description)
