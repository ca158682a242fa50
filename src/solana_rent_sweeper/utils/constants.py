"""Shared constants for token account recovery and vesting maths."""

from datetime import datetime, timezone


# Utility function to get timezone-aware UTC datetime
def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


LAMPORTS_PER_SOL = 1_000_000_000

# Byte size of an SPL token account; its rent-exempt minimum is what closing returns.
TOKEN_ACCOUNT_SIZE = 165

SOL_MINT = "So11111111111111111111111111111111111111112"

# Mints never offered for burning even when the wallet holds a balance.
NON_BURNABLE_MINTS: dict[str, str] = {
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": "USDC",
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": "USDT",
    SOL_MINT: "wSOL",
}

DEFAULT_FEE_WALLET = "DHFvuPUG3nDbdr2uHwVGuEqSjwdL4iC6ESAErYAwhV2K"

# Step vesting releases in fixed 30 day "months".
STEP_MONTH_SECONDS = 30 * 24 * 60 * 60

# Fixed-point scale used when computing linear vesting ratios.
VESTING_RATIO_SCALE = 1_000_000

# Upper bound of pubkeys accepted by getMultipleAccounts.
MAX_MULTIPLE_ACCOUNTS = 100

__all__ = [
    "utc_now",
    "LAMPORTS_PER_SOL",
    "TOKEN_ACCOUNT_SIZE",
    "SOL_MINT",
    "NON_BURNABLE_MINTS",
    "DEFAULT_FEE_WALLET",
    "STEP_MONTH_SECONDS",
    "VESTING_RATIO_SCALE",
    "MAX_MULTIPLE_ACCOUNTS",
]
