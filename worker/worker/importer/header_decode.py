"""
Decoding of header labels and text cells as they arrive from spreadsheet
tools that export with a UTF-7 style transport encoding (``+ACY-`` for ``&``
and so on) and HTML entities.
"""

import html
import re

# Modified UTF-7 escapes for the ASCII punctuation seen in catalog labels.
# "+ACs-" ('+') is left out so a decoded value never reintroduces a plus.
UTF7_ESCAPES = {
    "ACY": "&",
    "AF8": "_",
    "ACo": "*",
    "AC0": "-",
    "ACc": "'",
    "ACI": '"',
    "ACQ": "$",
    "ACU": "%",
    "ACg": "(",
    "ACk": ")",
    "ACA": " ",
    "ACE": "!",
    "ACM": "#",
    "ACw": ",",
    "AC4": ".",
    "AC8": "/",
    "ADo": ":",
    "ADs": ";",
    "ADw": "<",
    "AD0": "=",
    "AD4": ">",
    "AD8": "?",
    "AEA": "@",
    "AFs": "[",
    "AFw": "\\",
    "AF0": "]",
    "AF4": "^",
    "AGA": "`",
    "AHs": "{",
    "AHw": "|",
    "AH0": "}",
    "AH4": "~",
}

_ESCAPE_PATTERN = re.compile(r"\+(A[A-Za-z0-9]{2})-")


def _replace_escape(match: "re.Match[str]") -> str:
    return UTF7_ESCAPES.get(match.group(1), match.group(0))


def _decode_once(text: str) -> str:
    text = _ESCAPE_PATTERN.sub(_replace_escape, text)
    text = text.replace("+", " ")
    text = html.unescape(text)
    return text.strip()


def decode_header(value) -> str:
    """
    Decode a header label or text cell.

    Every pass either shortens the text or removes a ``+``, so iterating to
    a fixed point terminates and makes ``decode_header`` idempotent even for
    inputs like ``&amp;amp;`` or ``&#43;ACY-``.
    """
    if value is None:
        return ""
    text = str(value)
    while True:
        decoded = _decode_once(text)
        if decoded == text:
            return decoded
        text = decoded
