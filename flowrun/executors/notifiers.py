"""
Notification senders: Slack, Discord, Telegram, Gmail.

Each one builds the provider payload from node parameters (falling back to
the node input as message text), performs the call and reports the outcome
as ``{"success": ...}`` data. Nothing here raises into the engine.

Supports:
- Slack / Discord incoming webhooks
- Telegram Bot API (bot token + chat id on the node)
- Gmail over SMTP (MAIL_* credentials, overridable per node)
"""

import asyncio
import json
import logging
import smtplib
from email.mime.text import MIMEText
from typing import Any

import httpx

from flowrun.executors.base import ExecutionContext, executor, to_text
from flowrun.graph.model import Node

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org/bot"
SLACK_USERNAME = "Workflow Automation"
DEFAULT_EMAIL_SUBJECT = "Notification from your workflow"
DEFAULT_SMTP_HOST = "smtp.gmail.com"
DEFAULT_SMTP_PORT = 587


def _message_from_input(input_data: Any, pretty: bool = False) -> str:
    if isinstance(input_data, str):
        return input_data
    return json.dumps(input_data, indent=2 if pretty else None, default=str)


async def _post_json(ctx: ExecutionContext, url: str, payload: dict[str, Any]) -> httpx.Response:
    async with ctx.http_client(timeout=ctx.config.notifier_timeout, verify=False) as client:
        return await client.post(url, json=payload)


# ---------------------------------------------------------------------------
# Slack
# ---------------------------------------------------------------------------


@executor("Slack")
async def execute_slack(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    webhook_url = node.param("webhookUrl", "webhook_url")
    if not webhook_url:
        return {"error": "No Slack webhook URL configured", "success": False}

    message = node.param("message", "text") or _message_from_input(input_data, pretty=True)
    payload = {"text": message, "username": SLACK_USERNAME, "icon_emoji": ":robot_face:"}

    try:
        response = await _post_json(ctx, webhook_url, payload)
    except httpx.HTTPError as e:
        logger.error(f"Slack webhook call failed: {e}")
        return {"error": f"Slack notification failed: {e}", "success": False}

    if response.status_code == 200:
        return {"success": True, "message_sent": True, "channel": "Slack", "response": response.text}
    return {
        "error": f"Slack API error (HTTP {response.status_code}): {response.text}",
        "success": False,
    }


# ---------------------------------------------------------------------------
# Discord
# ---------------------------------------------------------------------------


@executor("Discord")
async def execute_discord(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    webhook_url = node.param("webhookUrl", "webhook_url")
    if not webhook_url:
        return {"error": "No Discord webhook URL configured", "success": False}

    content = node.param("content", "message") or _message_from_input(input_data)

    try:
        response = await _post_json(ctx, webhook_url, {"content": content})
    except httpx.HTTPError as e:
        logger.error(f"Discord webhook call failed: {e}")
        return {"error": f"Discord notification failed: {e}", "success": False}

    # Discord answers a delivered webhook with 204 No Content
    return {
        "success": response.status_code == 204,
        "message_sent": True,
        "status_code": response.status_code,
    }


# ---------------------------------------------------------------------------
# Telegram
# ---------------------------------------------------------------------------


@executor("Telegram")
async def execute_telegram(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    bot_token = node.param("botToken")
    chat_id = node.param("chatId")
    if not bot_token or not chat_id:
        return {"error": "Missing bot token or chat ID", "success": False}

    text = node.param("text") or _message_from_input(input_data)

    try:
        response = await _post_json(
            ctx, f"{TELEGRAM_API_BASE}{bot_token}/sendMessage", {"chat_id": chat_id, "text": text}
        )
    except httpx.HTTPError as e:
        logger.error(f"Telegram API call failed: {e}")
        return {"error": f"Telegram notification failed: {e}", "success": False}

    try:
        body = response.json()
    except ValueError:
        body = None
    return {"success": response.status_code == 200, "message_sent": True, "response": body}


# ---------------------------------------------------------------------------
# Gmail (SMTP)
# ---------------------------------------------------------------------------


def _send_smtp(
    host: str,
    port: int,
    user: str | None,
    password: str | None,
    sender: str,
    to: str,
    subject: str,
    body: str,
    timeout: float,
) -> None:
    msg = MIMEText(body, "plain", "utf-8")
    msg["To"] = to
    msg["From"] = sender
    msg["Subject"] = subject

    if port == 465:
        server: smtplib.SMTP = smtplib.SMTP_SSL(host, port, timeout=timeout)
    else:
        server = smtplib.SMTP(host, port, timeout=timeout)
    with server:
        if port != 465:
            server.starttls()
        if user and password:
            server.login(user, password)
        server.sendmail(sender, [addr.strip() for addr in to.split(",")], msg.as_string())


@executor("Gmail")
async def execute_gmail(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    to = node.param("to")
    if not to:
        return {"error": "No recipient email address", "success": False}

    subject = node.param("subject", default=DEFAULT_EMAIL_SUBJECT)
    message = node.param("message", "text") or _message_from_input(input_data, pretty=True)

    host = node.param("smtp_host") or ctx.secret("MAIL_HOST") or DEFAULT_SMTP_HOST
    port_value = node.param("smtp_port") or ctx.secret("MAIL_PORT") or DEFAULT_SMTP_PORT
    user = node.param("smtp_user") or ctx.secret("MAIL_USERNAME")
    password = node.param("smtp_password") or ctx.secret("MAIL_PASSWORD")
    sender = node.param("from") or ctx.secret("MAIL_FROM") or user or "noreply@workflow.local"

    try:
        port = int(port_value)
        await asyncio.to_thread(
            _send_smtp,
            host,
            port,
            user,
            password,
            sender,
            to_text(to),
            to_text(subject),
            message,
            ctx.config.notifier_timeout,
        )
    except (smtplib.SMTPException, OSError, ValueError) as e:
        logger.error(f"Email to {to} failed: {e}")
        return {
            "error": f"Email failed: {e}",
            "success": False,
            "note": "Configure MAIL_* credentials or smtp_* node parameters",
        }

    logger.info(f"Email sent to {to}")
    return {"success": True, "email_sent": True, "to": to, "subject": subject}
