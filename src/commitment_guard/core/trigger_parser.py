"""
Deterministic trigger extraction from commitment text.

A commitment declares its tokens and triggers as bullet lines:

    - WETH = 0x7b79995e5f793a07bc00c21412e50ecae098e7f9
    - USDC = 0x1c7d4b196cb0c7b01d743fbc6116a902379c7238
    - id=eth-up | pair=WETH/USDC | comparator=gte | threshold=1800 | priority=1
    - id=uni-down | pair=UNI/WETH | comparator=<= | threshold=0.03 | pool=high-liquidity

Lines that do not look like either shape are ignored; trigger lines that are
malformed are skipped with a warning.
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from .triggers import Trigger, sanitize_triggers

logger = logging.getLogger(__name__)

_TOKEN_LINE = re.compile(r"^\s*-\s*([A-Z][A-Z0-9_]*)\s*=\s*(0x[a-fA-F0-9]{40})\s*$")
_TRIGGER_LINE = re.compile(r"^\s*-\s*id=")


def parse_token_map(commitment_text: str) -> dict[str, str]:
    """Map token symbols to addresses declared in the commitment."""
    tokens: dict[str, str] = {}
    for line in commitment_text.splitlines():
        match = _TOKEN_LINE.match(line)
        if match:
            tokens[match.group(1)] = match.group(2)
    return tokens


def parse_trigger_fields(line: str) -> dict[str, str]:
    """Split a `- key=value | key=value` line into a dict."""
    body = re.sub(r"^\s*-\s*", "", line)
    fields: dict[str, str] = {}
    for segment in body.split("|"):
        segment = segment.strip()
        eq = segment.find("=")
        if eq <= 0:
            continue
        fields[segment[:eq].strip()] = segment[eq + 1:].strip()
    return fields


def _line_to_spec(line: str, tokens: dict[str, str]) -> Optional[dict]:
    fields = parse_trigger_fields(line)
    missing = [k for k in ("id", "pair", "comparator", "threshold") if not fields.get(k)]
    if missing:
        logger.warning(f"Malformed trigger line (missing {', '.join(missing)}): {line.strip()}")
        return None

    parts = [p.strip() for p in fields["pair"].split("/")]
    if len(parts) != 2 or not all(parts):
        logger.warning(f"Invalid pair in trigger line: {line.strip()}")
        return None
    base_symbol, quote_symbol = parts

    base_token = tokens.get(base_symbol)
    quote_token = tokens.get(quote_symbol)
    if not base_token or not quote_token:
        logger.warning(
            f"Token address missing for pair {fields['pair']}; "
            f"define both symbols in the commitment token map"
        )
        return None

    return {
        "id": fields["id"],
        "label": fields.get("label")
        or f"{fields['pair']} {fields['comparator']} {fields['threshold']}",
        "baseToken": base_token,
        "quoteToken": quote_token,
        "comparator": fields["comparator"],
        "threshold": fields["threshold"],
        "priority": fields.get("priority"),
        "pool": fields.get("pool"),
        "emitOnce": fields.get("emitOnce"),
    }


def parse_commitment_triggers(commitment_text: Optional[str]) -> list[Trigger]:
    """
    Extract validated triggers from commitment text.

    Returns:
        Triggers ordered by (priority, id); empty list for empty text
    """
    if not commitment_text:
        return []

    tokens = parse_token_map(commitment_text)
    specs = []
    for line in commitment_text.splitlines():
        if not _TRIGGER_LINE.match(line):
            continue
        spec = _line_to_spec(line, tokens)
        if spec is not None:
            specs.append(spec)

    return sanitize_triggers(specs)
