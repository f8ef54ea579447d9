"""User-facing error texts shared by both authentication paths."""

DEFAULT_PURCHASE_URL = "https://panel.wtyczki.ai/"

LEDGER_FAILURE_MESSAGE = "Internal error: token usage could not be recorded"


def _tokens(n: int) -> str:
    return "1 token" if n == 1 else f"{n} tokens"


def format_insufficient_tokens_error(
    tool_name: str,
    current_balance: int,
    required_tokens: int,
    purchase_url: str = DEFAULT_PURCHASE_URL,
) -> str:
    """Explain a rejected call and how to top up."""
    shortfall = max(required_tokens - current_balance, 0)
    return (
        f"Insufficient balance to run {tool_name}: "
        f"need {required_tokens}, have {current_balance} "
        f"(short by {_tokens(shortfall)}).\n"
        f"Buy tokens: {purchase_url}"
    )


def format_account_deleted_error(tool_name: str) -> str:
    return (
        f"Cannot run {tool_name}: this account has been closed. "
        "Contact support if you believe this is a mistake."
    )


def format_purchase_required_error(email: str, purchase_url: str = DEFAULT_PURCHASE_URL) -> str:
    """For authenticated callers that have no ledger account yet."""
    return (
        f"No token account exists for {email}. "
        f"Purchase tokens at {purchase_url} to start using this server."
    )


def format_no_data_error(tool_name: str, detail: str) -> str:
    return (
        f"No data available for {tool_name}: {detail} "
        "NBP publishes rates only on trading days (Mon-Fri, excluding Polish holidays). "
        "Try an earlier date. No tokens were charged."
    )


def format_upstream_error(tool_name: str) -> str:
    return (
        f"The NBP API is unavailable for {tool_name} right now. "
        "Please try again in a moment. No tokens were charged."
    )


def format_tool_failure(tool_name: str) -> str:
    return f"Error executing {tool_name}. No tokens were charged."


def format_invalid_input(tool_name: str, detail: str) -> str:
    return f"Invalid input for {tool_name}: {detail}"
