import secrets

from fastapi import APIRouter, Depends, HTTPException, Request, Response

router = APIRouter(tags=["metrics"])


def _presented_token(request: Request) -> str | None:
    scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return request.query_params.get("token")


async def require_scrape_token(request: Request) -> None:
    """Scrapers authenticate with METRICS_TOKEN when one is configured."""
    expected = getattr(getattr(request.app.state, "app_settings", None), "metrics_token", None)
    if not expected:
        return
    presented = _presented_token(request)
    if presented is None or not secrets.compare_digest(presented.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/metrics", dependencies=[Depends(require_scrape_token)])
async def scrape_metrics(request: Request) -> Response:
    metrics_client = getattr(request.app.state, "metrics", None)
    if metrics_client is None or not metrics_client.enabled:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    body, content_type = metrics_client.render()
    return Response(content=body, media_type=content_type)
