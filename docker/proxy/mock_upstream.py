#!/usr/bin/env python3
"""
Default mock upstream for proxy-pass fixtures.

Served by the proxy container when a test asks for a proxy without giving
its own handlers. Echoes enough of each request back for tests to assert
that nginx forwarded path, query and headers correctly.
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

app = FastAPI(title="Buildpack harness mock upstream")

HEALTH_RESPONSE = {"status": "healthy", "service": "mock-upstream"}


@app.get("/health")
async def health_check() -> JSONResponse:
    return JSONResponse(content=HEALTH_RESPONSE, status_code=200)


@app.api_route("/{path:path}", methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"])
async def echo(path: str, request: Request) -> dict[str, Any]:
    """Echo the proxied request."""
    return {
        "method": request.method,
        "path": f"/{path}",
        "query": request.url.query,
        "headers": {key: value for key, value in request.headers.items()},
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=9292, workers=1)
