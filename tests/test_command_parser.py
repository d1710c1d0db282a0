"""
Unit tests for command and dialogue input parsing
"""

from decimal import Decimal

import pytest

from src.utils.command_parser import parse_amount, parse_command, parse_count


ALIASES = ("red", "hb", "hongbao")


@pytest.mark.parametrize(
    "text, expected",
    [
        ("100", Decimal("100")),
        ("8.88", Decimal("8.88")),
        ("50usdt", Decimal("50")),
        ("50 U", Decimal("50")),
        (" 12.5 ", Decimal("12.5")),
        ("-5", None),
        ("abc", None),
        ("1,000", None),
        ("", None),
    ],
)
def test_parse_amount(text, expected):
    assert parse_amount(text) == expected


@pytest.mark.parametrize(
    "text, expected",
    [("10", 10), ("10个", 10), ("0", 0), ("2.5", None), ("ten", None)],
)
def test_parse_count(text, expected):
    assert parse_count(text) == expected


def test_full_command():
    command = parse_command("/red 50 5 Happy new year", ALIASES)

    assert command.alias == "red"
    assert command.amount_text == "50"
    assert command.count_text == "5"
    assert command.title == "Happy new year"
    assert command.is_complete


def test_command_with_bot_mention_and_no_slash():
    assert parse_command("/hongbao@LuckyMoneyBot 8.88 3", ALIASES).is_complete
    assert parse_command("HB 50USDT 5个", ALIASES).amount_text == "50USDT"


def test_partial_and_bare_commands():
    bare = parse_command("/red", ALIASES)
    partial = parse_command("/red 50", ALIASES)

    assert bare.amount_text is None and not bare.is_complete
    assert partial.amount_text == "50" and partial.count_text is None


def test_non_commands():
    assert parse_command("hello there", ALIASES) is None
    assert parse_command("/start", ALIASES) is None
    assert parse_command("", ALIASES) is None


@pytest.mark.parametrize(
    "text",
    ["red wine tonight anyone?", "red", "hb 50", "hongbao 50 many", "Red 50usdt five"],
)
def test_chat_starting_with_alias_word_is_not_a_command(text):
    assert parse_command(text, ALIASES) is None


def test_slash_form_keeps_unparsable_fields_for_the_dialogue():
    command = parse_command("/red wine tonight", ALIASES)

    assert command.amount_text == "wine"
    assert command.count_text == "tonight"
