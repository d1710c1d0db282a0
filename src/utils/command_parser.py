# coding: utf-8
"""
Parser for lucky money commands and dialogue input

Accepted creation shorthand (@botname allowed; the slash may be dropped
only when amount and count follow):
    /red 100 10
    hb 50USDT 5个 Happy new year
    /hongbao@LuckyMoneyBot 8.88 3
"""
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional, Sequence

AMOUNT_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(?:usdt|u)?$", re.IGNORECASE)
COUNT_RE = re.compile(r"^(\d+)\s*个?$")


@dataclass
class ParsedCommand:
    """Result of parsing a creation command line."""
    alias: str
    amount_text: Optional[str] = None
    count_text: Optional[str] = None
    title: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.amount_text is not None and self.count_text is not None


def parse_amount(text: str) -> Optional[Decimal]:
    """
    Parse an amount like "100", "8.88", "50usdt"

    Returns:
        Decimal, or None if the text is not a positive-looking number.
        Precision and bounds are checked by the validation gate.
    """
    match = AMOUNT_RE.match(text.strip())
    if not match:
        return None
    try:
        return Decimal(match.group(1))
    except InvalidOperation:
        return None


def parse_count(text: str) -> Optional[int]:
    """Parse a share count like "10" or "10个"."""
    match = COUNT_RE.match(text.strip())
    if not match:
        return None
    return int(match.group(1))


def parse_command(text: str, aliases: Sequence[str]) -> Optional[ParsedCommand]:
    """
    Parse a creation command

    Args:
        text: Message text
        aliases: Accepted command names (without slash)

    Returns:
        ParsedCommand (possibly incomplete) or None if the text is not a
        creation command at all
    """
    if not text:
        return None
    parts = text.strip().split(maxsplit=3)
    slashed = parts[0].startswith("/")
    head = parts[0].lstrip("/").split("@", 1)[0].lower()
    if head not in {a.lower() for a in aliases}:
        return None

    # without the slash only "red <amount> <count> ..." counts, so plain
    # chat starting with the same word is left alone
    if not slashed and (
        len(parts) < 3
        or parse_amount(parts[1]) is None
        or parse_count(parts[2]) is None
    ):
        return None

    command = ParsedCommand(alias=head)
    if len(parts) >= 2:
        command.amount_text = parts[1]
    if len(parts) >= 3:
        command.count_text = parts[2]
    if len(parts) == 4:
        command.title = parts[3].strip() or None
    return command
