"""
Swap extractor: Helius enhanced transactions to TradeRecord.

Normalizes the events.swap section (single object, array, or objects with
nested innerSwaps) into SwapEvent values, then looks for the first swap that
moves the tracked token against a recognized base asset (WSOL / USDC / USDT).
Purely structural; never raises to the caller. Anything that does not
describe a qualifying buy or sell yields None.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from backend_buybot.buybot_logging import get_logger, short_id
from backend_buybot.solana_listener.models import (
    BASE_ASSET_SYMBOLS,
    DEFAULT_BASE_ASSETS,
    UNKNOWN_COUNTERPARTY,
    UNKNOWN_VENUE,
    WSOL_MINT,
    SwapEvent,
    SwapLeg,
    TradeDirection,
    TradeRecord,
)

logger = get_logger(__name__)

# Known DEX program ids; first instruction match wins
DEX_PROGRAMS: dict[str, str] = {
    "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8": "Raydium",
    "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4": "Jupiter",
    "CPMMoo8L3F4NbTegBCKVNunggL7H1ZpdTHKxQB5qKP1C": "Raydium CPMM",
    "CAMMCzo5YL8w4VFF8KVHrK22GGUsp5VTaW7grrKgrWqK": "Raydium CLMM",
    "whirLbMiicVdio4qvUfM5KAg6Ct8VwpYzGff3uctyCc": "Orca Whirlpool",
    "LBUZKhRxPF3XUpBCjp4YzTKgLccjZhTSDM9YuVaPwxo": "Meteora DLMM",
    "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P": "Pump.fun",
    "pAMMBay6oceH9fJKBRHGP5D4bD4sWpmSwMn52FMfXEA": "PumpSwap",
}

NATIVE_SOL_DECIMALS = 9
DEFAULT_LARGE_TRADE_THRESHOLD = 10.0


def _as_list(value: Any, name: str) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    raise ValueError(f"{name} must be a list, got {type(value).__name__}")


def _parse_amount(value: Any) -> tuple[int | None, float | None]:
    """
    Return (raw_amount, ui_amount) for a tokenAmount value.

    Integers and digit-only strings are raw base units; floats and decimal
    strings are already whole-unit amounts.
    """
    if isinstance(value, bool):
        raise ValueError("tokenAmount must be numeric, got bool")
    if isinstance(value, int):
        return value, None
    if isinstance(value, float):
        return None, value
    if isinstance(value, str):
        s = value.strip()
        if s.isdigit():
            return int(s), None
        return None, float(s)
    raise ValueError(f"tokenAmount must be numeric, got {type(value).__name__}")


def _parse_leg(item: Any) -> SwapLeg | None:
    """Build a SwapLeg from a tokenInputs/tokenOutputs entry; None if it has no mint."""
    if not isinstance(item, dict):
        return None
    raw = item.get("rawTokenAmount")
    mint = item.get("mint") or (raw.get("mint") if isinstance(raw, dict) else None)
    if not mint:
        return None
    if isinstance(raw, dict) and raw.get("tokenAmount") is not None:
        decimals = raw.get("decimals")
        return SwapLeg(
            mint=mint,
            raw_amount=int(str(raw["tokenAmount"])),
            decimals=int(decimals) if decimals is not None else None,
        )
    if item.get("tokenAmount") is not None:
        raw_amount, ui_amount = _parse_amount(item["tokenAmount"])
        return SwapLeg(mint=mint, raw_amount=raw_amount, ui_amount=ui_amount)
    return SwapLeg(mint=mint, raw_amount=0)


def _parse_native_leg(item: Any) -> SwapLeg | None:
    """nativeInput / nativeOutput ({account, amount} in lamports) as a WSOL leg."""
    if not isinstance(item, dict) or item.get("amount") is None:
        return None
    return SwapLeg(
        mint=WSOL_MINT,
        raw_amount=int(str(item["amount"])),
        decimals=NATIVE_SOL_DECIMALS,
    )


def _parse_swap(obj: dict[str, Any]) -> SwapEvent:
    inputs = [_parse_leg(i) for i in _as_list(obj.get("tokenInputs"), "tokenInputs")]
    outputs = [_parse_leg(o) for o in _as_list(obj.get("tokenOutputs"), "tokenOutputs")]
    inputs.append(_parse_native_leg(obj.get("nativeInput")))
    outputs.append(_parse_native_leg(obj.get("nativeOutput")))
    inner = tuple(
        _parse_swap(s)
        for s in _as_list(obj.get("innerSwaps"), "innerSwaps")
        if isinstance(s, dict)
    )
    return SwapEvent(
        inputs=tuple(leg for leg in inputs if leg is not None),
        outputs=tuple(leg for leg in outputs if leg is not None),
        inner=inner,
    )


def normalize_swap_events(section: Any) -> list[SwapEvent]:
    """
    Turn events.swap into an ordered list of SwapEvent.

    Accepts a single swap object, an array of swap objects, or None. Any other
    shape is reported and treated as "no swaps".
    """
    if section is None:
        return []
    if isinstance(section, dict):
        items = [section]
    elif isinstance(section, list):
        items = [s for s in section if isinstance(s, dict)]
    else:
        logger.debug("swap_events_invalid_shape", shape=type(section).__name__)
        return []
    swaps = [_parse_swap(s) for s in items]
    return [s for s in swaps if s.inputs or s.outputs or s.inner]


def _normalize_base_assets(base_assets: Mapping[str, int] | Iterable[str]) -> Mapping[str, int]:
    if isinstance(base_assets, Mapping):
        return base_assets
    return {m: DEFAULT_BASE_ASSETS.get(m, NATIVE_SOL_DECIMALS) for m in base_assets}


def _match_legs(
    swap: SwapEvent,
    tracked_mint: str,
    base_assets: Mapping[str, int],
) -> tuple[TradeDirection, SwapLeg, SwapLeg] | None:
    """Return (direction, base_leg, token_leg) for one level of a swap, or None."""
    token_out = next((leg for leg in swap.outputs if leg.mint == tracked_mint), None)
    token_in = next((leg for leg in swap.inputs if leg.mint == tracked_mint), None)
    base_in = next((leg for leg in swap.inputs if leg.mint in base_assets), None)
    base_out = next((leg for leg in swap.outputs if leg.mint in base_assets), None)

    if token_out is not None and base_in is not None:
        return TradeDirection.BUY, base_in, token_out
    if token_in is not None and base_out is not None:
        return TradeDirection.SELL, base_out, token_in
    return None


def _match_swap(
    swap: SwapEvent,
    tracked_mint: str,
    base_assets: Mapping[str, int],
) -> tuple[TradeDirection, SwapLeg, SwapLeg] | None:
    """Top-level legs first, then each inner swap in order."""
    found = _match_legs(swap, tracked_mint, base_assets)
    if found is not None:
        return found
    for inner in swap.inner:
        found = _match_legs(inner, tracked_mint, base_assets)
        if found is not None:
            return found
    return None


def resolve_venue(source: Any, instructions: Any) -> str:
    """
    Venue name for a transaction.

    A non-empty source label (other than UNKNOWN) wins; otherwise the first
    instruction whose programId is a known DEX program.
    """
    if isinstance(source, str) and source.strip() and source.strip().upper() != "UNKNOWN":
        return source.strip()
    if isinstance(instructions, list):
        for ix in instructions:
            program_id = ix.get("programId") if isinstance(ix, dict) else None
            if isinstance(program_id, str) and program_id in DEX_PROGRAMS:
                return DEX_PROGRAMS[program_id]
    return UNKNOWN_VENUE


def _occurred_at(timestamp: Any) -> datetime:
    if timestamp is None:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)


def _extract(
    raw: Any,
    tracked_mint: str,
    base_assets: Mapping[str, int],
    decimals: int,
    large_trade_threshold: float,
) -> TradeRecord | None:
    if not isinstance(raw, dict):
        logger.debug("trade_extract_skipped", reason="not_an_object")
        return None
    signature = raw.get("signature")
    if not isinstance(signature, str) or not signature:
        logger.debug("trade_extract_skipped", reason="missing_signature")
        return None
    events = raw.get("events")
    if not isinstance(events, dict):
        return None

    swaps = normalize_swap_events(events.get("swap"))
    if not swaps:
        return None

    relevant = next((s for s in swaps if s.references(tracked_mint)), None)
    if relevant is None:
        return None

    matched = _match_swap(relevant, tracked_mint, base_assets)
    if matched is None:
        logger.debug(
            "trade_extract_skipped",
            reason="no_base_asset_leg",
            signature=short_id(signature),
        )
        return None
    direction, base_leg, token_leg = matched

    base_amount = base_leg.amount(base_assets.get(base_leg.mint, NATIVE_SOL_DECIMALS))
    token_amount = token_leg.amount(decimals)
    price = base_amount / token_amount if token_amount > 0 else 0.0

    return TradeRecord(
        signature=signature,
        direction=direction,
        base_amount=base_amount,
        token_amount=token_amount,
        price_per_token=price,
        venue=resolve_venue(raw.get("source"), raw.get("instructions")),
        is_large_trade=base_amount >= large_trade_threshold,
        occurred_at=_occurred_at(raw.get("timestamp")),
        counterparty=raw.get("feePayer") or UNKNOWN_COUNTERPARTY,
        base_mint=base_leg.mint,
        base_symbol=BASE_ASSET_SYMBOLS.get(base_leg.mint, base_leg.mint[:4]),
    )


def extract_trade(
    raw: Any,
    tracked_mint: str,
    base_assets: Mapping[str, int] | Iterable[str] = DEFAULT_BASE_ASSETS,
    decimals: int = 6,
    *,
    large_trade_threshold: float = DEFAULT_LARGE_TRADE_THRESHOLD,
) -> TradeRecord | None:
    """
    Extract a buy/sell of tracked_mint from a Helius enhanced transaction.

    base_assets maps recognized base-asset mints to their decimals (a plain
    iterable of mints uses the known decimals). decimals is the tracked
    token's decimals. Returns None for anything that is not a qualifying
    trade, including malformed payloads; never raises.
    """
    try:
        return _extract(
            raw,
            tracked_mint,
            _normalize_base_assets(base_assets),
            decimals,
            large_trade_threshold,
        )
    except Exception as e:
        signature = raw.get("signature") if isinstance(raw, dict) else None
        logger.error(
            "trade_extract_failed",
            signature=short_id(signature if isinstance(signature, str) else None),
            error=str(e),
            error_type=type(e).__name__,
        )
        return None


def format_number(num: float, decimals: int = 2) -> str:
    """Abbreviate with K / M / B suffixes."""
    if num >= 1e9:
        return f"{num / 1e9:.{decimals}f}B"
    if num >= 1e6:
        return f"{num / 1e6:.{decimals}f}M"
    if num >= 1e3:
        return f"{num / 1e3:.{decimals}f}K"
    return f"{num:.{decimals}f}"
