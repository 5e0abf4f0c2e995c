from __future__ import annotations

import pytest

from promoscan.errors import InvalidInputError
from promoscan.services.input_validation import validate_channel_input, validate_domain_input


@pytest.mark.parametrize(
    "raw_input",
    [
        "https://www.youtube.com/@creator",
        "https://youtube.com/channel/UCabcdefghijklmnopqrstuv",
        "https://youtu.be/abc123",
        "UCabcdefghijklmnopqrstuv",
        "@some.creator-1",
        "some creator",
    ],
)
def test_valid_channel_inputs_pass_through(raw_input: str) -> None:
    assert validate_channel_input(f"  {raw_input} ") == raw_input


@pytest.mark.parametrize(
    ("raw_input", "message"),
    [
        (None, "Input is required"),
        ("   ", "Input is required"),
        ("a", "Input is too short"),
        ("x" * 501, "Input is too long"),
        ("<script>alert(1)</script>", "Invalid characters in input"),
        ("javascript:alert(1)", "Invalid characters in input"),
        ("@creator onclick=boom", "Invalid characters in input"),
        ("https://", "Invalid URL format"),
        ("https://vimeo.com/creator", "Only YouTube URLs are allowed"),
        ("https://youtube.com.evil.example/@creator", "Only YouTube URLs are allowed"),
        ("UCshort", "Invalid channel ID format"),
        ("@bad handle!", "Invalid handle format"),
        ("@" + "a" * 51, "Invalid handle format"),
    ],
)
def test_invalid_channel_inputs_are_rejected(raw_input: object, message: str) -> None:
    with pytest.raises(InvalidInputError, match=message) as exc_info:
        validate_channel_input(raw_input)

    assert exc_info.value.code == "INVALID_INPUT"


@pytest.mark.parametrize(
    ("raw_input", "expected"),
    [
        ("example.com", "example.com"),
        ("  Shop.Example.COM ", "shop.example.com"),
        ("https://www.example.co.uk/path?x=1", "example.co.uk"),
        ("http://example.com:8080", "example.com"),
    ],
)
def test_domain_input_is_reduced_to_hostname(raw_input: str, expected: str) -> None:
    assert validate_domain_input(raw_input) == expected


@pytest.mark.parametrize(
    ("raw_input", "message"),
    [
        ("", "Domain is required"),
        (42, "Domain is required"),
        ("a.", "Invalid domain length"),
        ("localhost", "Invalid domain format"),
        ("-bad.example", "Invalid domain format"),
        ("exa mple.com", "Invalid domain format"),
    ],
)
def test_invalid_domains_are_rejected(raw_input: object, message: str) -> None:
    with pytest.raises(InvalidInputError, match=message):
        validate_domain_input(raw_input)
