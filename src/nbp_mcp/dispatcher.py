"""Shared tool workflow: validate, check balance, execute, shape, consume, respond.

Both protocol adapters route every ``tools/call`` through
:meth:`ToolDispatcher.call_tool`, so the charging rules live in one place:

- invalid input is rejected before the ledger is touched;
- closed accounts and short balances are rejected without a charge;
- upstream failures (no data, timeouts, non-2xx) are reported without a charge;
- a successful call is charged exactly once, keyed by a pre-generated action id.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from mcp.types import CallToolResult, TextContent
from pydantic import ValidationError

from nbp_mcp.api.client import NBPAPIError, NBPClient, NBPNoDataError
from nbp_mcp.balance import check_balance
from nbp_mcp.config import Settings, get_settings
from nbp_mcp.consumption import ConsumptionResult, LedgerError, consume_tokens_with_retry
from nbp_mcp.db.store import LedgerStore
from nbp_mcp.messages import (
    format_account_deleted_error,
    format_insufficient_tokens_error,
    format_invalid_input,
    format_no_data_error,
    format_tool_failure,
    format_upstream_error,
)
from nbp_mcp.security import redact_pii, sanitize_output
from nbp_mcp.tools.definitions import ToolInputError, ToolSpec, get_tool_spec

logger = logging.getLogger(__name__)


class InvocationState(str, Enum):
    START = "start"
    BALANCE_CHECKED = "balance_checked"
    REJECTED_INVALID = "rejected_invalid"
    REJECTED_DELETED = "rejected_deleted"
    REJECTED_INSUFFICIENT = "rejected_insufficient"
    EXECUTING = "executing"
    CONSUMED = "consumed"
    FAILED = "failed"
    DONE = "done"


TERMINAL_REJECTIONS = frozenset({
    InvocationState.REJECTED_INVALID,
    InvocationState.REJECTED_DELETED,
    InvocationState.REJECTED_INSUFFICIENT,
})


@dataclass(frozen=True)
class ToolOutcome:
    """Result of one invocation.

    ``state`` is the deciding state (a rejection, ``CONSUMED`` or ``FAILED``);
    ``trace`` is the full path through the state machine.
    """

    text: str
    state: InvocationState
    is_error: bool = False
    structured: dict[str, Any] | None = None
    trace: tuple[InvocationState, ...] = ()
    action_id: str | None = None
    consumption: ConsumptionResult | None = None

    @property
    def charged(self) -> bool:
        return self.consumption is not None

    def to_call_tool_result(self) -> CallToolResult:
        return CallToolResult(
            content=[TextContent(type="text", text=self.text)],
            structuredContent=self.structured,
            isError=self.is_error,
        )


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "arguments"
        msg = err["msg"].removeprefix("Value error, ")
        parts.append(f"{loc}: {msg}")
    return "; ".join(parts)


def _redact_leaves(value: Any) -> Any:
    """Apply PII redaction to every string inside a JSON-like structure."""
    if isinstance(value, str):
        return redact_pii(value)[0]
    if isinstance(value, dict):
        return {k: _redact_leaves(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact_leaves(v) for v in value]
    return value


@dataclass
class _Run:
    """Mutable bookkeeping for one call (path through the state machine)."""

    spec: ToolSpec
    trace: list[InvocationState] = field(default_factory=lambda: [InvocationState.START])
    action_id: str | None = None

    def enter(self, state: InvocationState) -> None:
        self.trace.append(state)

    def finish(
        self,
        state: InvocationState,
        text: str,
        *,
        is_error: bool,
        structured: dict[str, Any] | None = None,
        consumption: ConsumptionResult | None = None,
    ) -> ToolOutcome:
        self.enter(state)
        if state not in TERMINAL_REJECTIONS:
            self.enter(InvocationState.DONE)
        return ToolOutcome(
            text=text,
            state=state,
            is_error=is_error,
            structured=structured,
            trace=tuple(self.trace),
            action_id=self.action_id,
            consumption=consumption,
        )


class ToolDispatcher:
    """Runs tool calls for one authenticated user.

    Holds only references (ledger store, NBP client, identity, settings), so
    instances are cheap to rebuild and safe to drop from any cache.
    """

    def __init__(
        self,
        store: LedgerStore,
        api: NBPClient,
        user_id: str,
        email: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.api = api
        self.user_id = user_id
        self.email = email
        self.settings = settings or get_settings()

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> ToolOutcome:
        """Run ``name`` with ``arguments``.

        Raises:
            ToolNotFoundError: no tool called ``name``.
            LedgerError: the charge could not be recorded after all retries.
        """
        spec = get_tool_spec(name)
        run = _Run(spec)

        # 1-2. Validate before touching the ledger
        try:
            params = spec.input_model.model_validate(arguments or {})
            if spec.validate is not None:
                spec.validate(params)
        except ValidationError as e:
            return self._reject_invalid(run, _describe_validation_error(e))
        except ToolInputError as e:
            return self._reject_invalid(run, str(e))

        # 3. Idempotency key for this call
        run.action_id = str(uuid.uuid4())

        # 4. Balance (always a fresh ledger read)
        balance = await check_balance(self.store, self.user_id, spec.cost)
        run.enter(InvocationState.BALANCE_CHECKED)
        if balance.user_deleted:
            logger.info("Rejected %s for deleted account %s.", spec.name, self.user_id)
            return run.finish(
                InvocationState.REJECTED_DELETED,
                format_account_deleted_error(spec.name),
                is_error=True,
            )
        if not balance.sufficient:
            logger.info(
                "Rejected %s for %s: balance %d, cost %d.",
                spec.name, self.user_id, balance.current_balance, spec.cost,
            )
            return run.finish(
                InvocationState.REJECTED_INSUFFICIENT,
                format_insufficient_tokens_error(
                    spec.name, balance.current_balance, spec.cost, self.settings.purchase_url
                ),
                is_error=True,
            )

        # 5. Execute
        run.enter(InvocationState.EXECUTING)
        try:
            result = await spec.execute(self.api, params)
        except NBPNoDataError as e:
            logger.info("No NBP data for %s %s: %s", spec.name, params.to_arguments(), e)
            return run.finish(
                InvocationState.FAILED, format_no_data_error(spec.name, str(e)), is_error=True
            )
        except NBPAPIError as e:
            logger.warning("NBP API failure in %s: %s", spec.name, e)
            return run.finish(
                InvocationState.FAILED, format_upstream_error(spec.name), is_error=True
            )
        except Exception:
            logger.exception("Tool %s failed for %s.", spec.name, self.user_id)
            return run.finish(InvocationState.FAILED, format_tool_failure(spec.name), is_error=True)

        # 6-7. Shape, then charge with the pre-generated action id
        try:
            text, structured = self._shape(spec, result.to_payload())
            consumption = await consume_tokens_with_retry(
                self.store,
                self.user_id,
                spec.cost,
                self.settings.mcp_server_name,
                spec.name,
                params.to_arguments(),
                text,
                True,
                run.action_id,
                max_attempts=self.settings.consume_max_attempts,
                backoff_seconds=self.settings.consume_backoff_seconds,
            )
        except LedgerError:
            logger.exception(
                "Could not record charge for %s (action %s).", spec.name, run.action_id
            )
            raise
        except Exception:
            logger.exception("Tool %s failed for %s.", spec.name, self.user_id)
            return run.finish(InvocationState.FAILED, format_tool_failure(spec.name), is_error=True)

        return run.finish(
            InvocationState.CONSUMED,
            text,
            is_error=False,
            structured=structured,
            consumption=consumption,
        )

    def _reject_invalid(self, run: _Run, detail: str) -> ToolOutcome:
        logger.info("Rejected %s: invalid input (%s).", run.spec.name, detail)
        return run.finish(
            InvocationState.REJECTED_INVALID,
            format_invalid_input(run.spec.name, detail),
            is_error=True,
        )

    def _shape(self, spec: ToolSpec, payload: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Sanitize and redact the serialized result.

        Returns the shaped text and its structured mirror. When bounding the
        length leaves text that no longer parses, the mirror is the payload
        with each string redacted instead.
        """
        raw = json.dumps(payload, ensure_ascii=False, indent=2)
        max_length = spec.max_output_length or self.settings.max_output_length
        sanitized = sanitize_output(raw, max_length=max_length)
        text, detected = redact_pii(sanitized)
        if detected:
            logger.warning(
                "Redacted PII from %s output: %s", spec.name, ", ".join(detected)
            )
        try:
            structured = json.loads(text)
        except ValueError:
            structured = _redact_leaves(payload)
        if not isinstance(structured, dict):
            structured = _redact_leaves(payload)
        return text, structured
