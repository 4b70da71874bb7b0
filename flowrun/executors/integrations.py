"""
Third-party integration nodes.

Vendor nodes (Notion, Stripe, GitHub, ...) are simulated: one echo executor
parameterized by category returns a deterministic "simulated success"
payload carrying the node type, the requested operation and the input.
Real vendor calls are out of scope; the one exception is OpenAI, which is
called for real when an ``OPENAI_API_KEY`` credential is available.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from flowrun.executors.base import ExecutionContext, ExecutorRegistry, get_executor_registry, to_text
from flowrun.graph.model import Node

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
OPENAI_DEFAULT_MODEL = "gpt-3.5-turbo"
OPENAI_MAX_TOKENS = 500


@dataclass(frozen=True)
class IntegrationCategory:
    """A family of simulated vendor nodes sharing one payload shape."""

    label: str
    members: tuple[str, ...]
    operation_key: str = "operation"
    default_operation: str = "execute"


INTEGRATION_CATEGORIES: tuple[IntegrationCategory, ...] = (
    IntegrationCategory(
        "productivity",
        (
            "Notion",
            "Google Sheets",
            "Google Drive",
            "Airtable",
            "Asana",
            "Trello",
            "Monday",
            "Jira",
            "ClickUp",
            "Todoist",
        ),
        operation_key="action",
        default_operation="create",
    ),
    IntegrationCategory(
        "crm",
        ("HubSpot", "Salesforce", "Pipedrive", "Zoho CRM", "Close", "Copper"),
        default_operation="create_contact",
    ),
    IntegrationCategory(
        "ecommerce",
        ("Shopify", "WooCommerce", "Stripe", "PayPal", "Square"),
        default_operation="get_orders",
    ),
    IntegrationCategory(
        "development",
        ("GitHub", "GitLab", "Bitbucket", "Jenkins", "CircleCI", "Docker", "Kubernetes"),
        operation_key="action",
        default_operation="get_repository",
    ),
    IntegrationCategory(
        "cloud",
        ("AWS S3", "AWS Lambda", "Dropbox", "Box", "OneDrive"),
        default_operation="upload",
    ),
    IntegrationCategory(
        "marketing",
        (
            "Google Analytics",
            "Facebook",
            "Instagram",
            "Twitter",
            "LinkedIn",
            "Mailchimp",
            "SendGrid",
            "Mixpanel",
        ),
        operation_key="action",
        default_operation="track_event",
    ),
    IntegrationCategory(
        "communication",
        ("Microsoft Teams", "Twilio", "WhatsApp"),
        default_operation="send_message",
    ),
    IntegrationCategory(
        "services",
        (
            "Redis",
            "Supabase",
            "Firebase",
            "Calendly",
            "Typeform",
            "Zoom",
            "Spotify",
            "YouTube",
            "RSS Feed",
            "WordPress",
            "Webflow",
            "Contentful",
            "Algolia",
        ),
        operation_key="action",
        default_operation="execute",
    ),
)

AI_TYPES = ("OpenAI", "Anthropic", "Google PaLM", "Hugging Face", "AI Transform")
DATABASE_TYPES = ("MySQL", "PostgreSQL", "MongoDB", "Database")


def make_integration_executor(category: IntegrationCategory):
    """Build the simulated executor for one category."""

    async def execute_integration(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
        node_type = node.resolved_type
        operation = node.param(category.operation_key, default=category.default_operation)
        return {
            "success": True,
            "simulated": True,
            "node_type": node_type,
            "category": category.label,
            "operation": operation,
            "input": input_data,
            "result": {"processed": True, "data": input_data},
            "note": f"Real {node_type} integration requires API credentials",
        }

    execute_integration.__name__ = f"execute_{category.label}_integration"
    return execute_integration


def register_integrations(registry: ExecutorRegistry) -> None:
    for category in INTEGRATION_CATEGORIES:
        registry.register(*category.members)(make_integration_executor(category))
    registry.register(*AI_TYPES)(execute_ai)
    registry.register(*DATABASE_TYPES)(execute_database)


# ---------------------------------------------------------------------------
# AI
# ---------------------------------------------------------------------------


async def _call_openai(
    ctx: ExecutionContext, api_key: str, model: str, prompt: str
) -> dict[str, Any] | None:
    """Chat completion; ``None`` when the call did not succeed."""
    payload = {
        "model": model,
        "messages": [{"role": "user", "content": prompt}],
        "max_tokens": OPENAI_MAX_TOKENS,
    }
    try:
        async with ctx.http_client() as client:
            response = await client.post(
                OPENAI_CHAT_URL,
                json=payload,
                headers={"Authorization": f"Bearer {api_key}"},
            )
    except httpx.HTTPError as e:
        logger.error(f"OpenAI API error: {e}")
        return None

    if response.status_code != 200:
        logger.error(f"OpenAI API error (HTTP {response.status_code}): {response.text}")
        return None

    data = response.json()
    choices = data.get("choices") or [{}]
    return {
        "success": True,
        "response": choices[0].get("message", {}).get("content", ""),
        "model": model,
        "usage": data.get("usage", {}),
    }


async def execute_ai(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    node_type = node.resolved_type
    prompt = node.param("prompt", "text") or to_text(input_data)

    api_key = ctx.secret("OPENAI_API_KEY")
    if node_type == "OpenAI" and api_key:
        model = node.param("model", default=OPENAI_DEFAULT_MODEL)
        result = await _call_openai(ctx, api_key, model, prompt)
        if result is not None:
            return result

    return {
        "success": True,
        "ai_model": node_type,
        "prompt": prompt,
        "response": f"AI-generated response for: {prompt}",
        "note": "Set the OPENAI_API_KEY credential for real OpenAI calls",
        "input_data": input_data,
    }


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


async def execute_database(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    return {
        "success": True,
        "operation": node.param("operation", default="select"),
        "table": node.param("table", default="data"),
        "query": node.param("query"),
        "affected_rows": 0,
        "data": input_data,
        "note": "Configure a database connection in node settings",
    }


register_integrations(get_executor_registry())
