"""
HTTP Request node.

Network failures are returned as data (``statusCode: 0``) so the run keeps
going; a non-2xx response is a normal result carrying its status code.
"""

import asyncio
import json
import logging
from typing import Any

import httpx

from flowrun.executors.base import ExecutionContext, executor
from flowrun.graph.model import Node

logger = logging.getLogger(__name__)

BODY_METHODS = ("POST", "PUT", "PATCH")


def _request_body(node: Node, method: str) -> str | None:
    if method not in BODY_METHODS:
        return None
    body = node.param("jsonBody", "body")
    if not body:
        return None
    return body if isinstance(body, str) else json.dumps(body)


def _parse_body(response: httpx.Response) -> Any:
    text = response.text
    try:
        return json.loads(text)
    except ValueError:
        return text


@executor("HTTP Request")
async def execute_http_request(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    url = node.param("url")
    if not url:
        return {"error": "No URL configured", "statusCode": 0}

    method = str(node.param("method", default="GET")).upper()
    body = _request_body(node, method)

    headers = {"Accept": "application/json"}
    if body:
        headers["Content-Type"] = "application/json"

    logger.info(
        f"Making HTTP request: {method} {url}",
        extra={"url": url, "event": "http_request"},
    )

    # httpx timeouts are per phase; the node as a whole gets one deadline
    deadline = ctx.config.http_timeout
    try:
        async with asyncio.timeout(deadline):
            async with ctx.http_client(follow_redirects=True, verify=False) as client:
                response = await client.request(method, url, content=body, headers=headers)
    except TimeoutError:
        logger.error(f"HTTP request to {url} exceeded {deadline:g}s")
        return {"error": f"Request timed out after {deadline:g}s", "statusCode": 0, "body": None, "url": url}
    except httpx.TimeoutException as e:
        logger.error(f"HTTP request to {url} timed out: {e}")
        return {"error": f"Request timed out: {e}", "statusCode": 0, "body": None, "url": url}
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.error(f"HTTP request to {url} failed: {e}")
        return {"error": f"Request failed: {e}", "statusCode": 0, "body": None, "url": url}

    logger.info(
        f"HTTP request successful: {response.status_code} ({len(response.content)} bytes)",
        extra={"url": url, "status": response.status_code},
    )
    return {
        "statusCode": response.status_code,
        "body": _parse_body(response),
        "headers": dict(response.headers),
    }
