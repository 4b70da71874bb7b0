"""
Pre-flight authorization for run submission.

Runs before a workflow is handed to the worker; the engine itself never
checks who is asking or what it costs. A gate either returns (allowed) or
raises PreflightRejected carrying the HTTP status and JSON body the API
should answer with.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_ACTION_COSTS: dict[str, int] = {
    "workflow_execute": 1,
    "workflow_download": 5,
}


class PreflightRejected(Exception):
    """Submission refused before the engine was invoked."""

    def __init__(self, reason: str, status_code: int, detail: dict[str, Any]):
        super().__init__(detail.get("message", reason))
        self.reason = reason
        self.status_code = status_code
        self.detail = detail


@dataclass
class Principal:
    """Who is submitting. ``user_id`` None means an anonymous guest."""

    user_id: str | None = None
    credit_balance: int = 0

    @property
    def is_guest(self) -> bool:
        return self.user_id is None


class SubmissionGate(Protocol):
    async def check(self, principal: Principal | None, action: str) -> None: ...


class AllowAllGate:
    """No checks: every submission is allowed."""

    async def check(self, principal: Principal | None, action: str) -> None:
        return None


class CreditGate:
    """
    Require a signed-in principal with enough credits for ``action``.

    Rejections:
    - guest / no principal -> 401 ``login_required``
    - balance below the action cost -> 402 ``insufficient_credits``
    """

    def __init__(
        self,
        costs: dict[str, int] | None = None,
        balance_lookup: Callable[[Principal], int] | None = None,
    ):
        self.costs = dict(DEFAULT_ACTION_COSTS if costs is None else costs)
        self.balance_lookup = balance_lookup

    def cost_of(self, action: str) -> int:
        return self.costs.get(action, 0)

    def balance_of(self, principal: Principal) -> int:
        if self.balance_lookup is not None:
            return self.balance_lookup(principal)
        return principal.credit_balance

    async def check(self, principal: Principal | None, action: str) -> None:
        if principal is None or principal.is_guest:
            raise PreflightRejected(
                "login_required",
                401,
                {
                    "message": "Please sign in to continue",
                    "action": "login_required",
                    "reason": "credits_required",
                },
            )

        cost = self.cost_of(action)
        balance = self.balance_of(principal)
        if balance < cost:
            logger.info(f"Rejected {action} for user {principal.user_id}: balance {balance} < cost {cost}")
            raise PreflightRejected(
                "insufficient_credits",
                402,
                {
                    "message": f"Insufficient credits. You need {cost} credits for this action.",
                    "action": "insufficient_credits",
                    "required_credits": cost,
                    "current_balance": balance,
                    "pricing_key": action,
                },
            )
