"""Approximate cost estimation for mixed-script text.

Calibrated against the backend tokenizer:

- ASCII letters, digits and whitespace: runs of ~4 chars per unit
- Hangul and CJK ideographs: 1.5 units per char
- Kana: 1.2 units per char
- Code punctuation: 0.5 units per char
- Anything outside the BMP (emoji, CJK Ext. B): 1.5 units per code point
- Any other symbol: 1.5 units per char

Costs are accumulated in twentieths of a unit so the sum is exact and the
final ceiling is deterministic.
"""

# Bump when the weights change; topics.json re-estimates on mismatch.
ESTIMATOR_VERSION = 2

_SCALE = 20
_WIDE = 30  # 1.5
_KANA = 24  # 1.2
_PUNCT = 10  # 0.5
_RUN_CHAR = 5  # 1/4

_CODE_PUNCT = frozenset("{}[]();:=<>/*+-&|!?.,'\"`@#%^~\\")
_WHITESPACE = frozenset(" \n\r\t")


def _is_hangul(c: int) -> bool:
    return 0xAC00 <= c <= 0xD7AF or 0x3131 <= c <= 0x3163 or 0x1100 <= c <= 0x11FF


def _is_cjk(c: int) -> bool:
    return 0x4E00 <= c <= 0x9FFF or 0x3400 <= c <= 0x4DBF or 0xF900 <= c <= 0xFAFF


def _is_kana(c: int) -> bool:
    return 0x3040 <= c <= 0x30FF


def _is_ascii_alnum(c: int) -> bool:
    return 0x30 <= c <= 0x39 or 0x41 <= c <= 0x5A or 0x61 <= c <= 0x7A


def estimate_tokens(text: str) -> int:
    """Estimate the backend cost of ``text`` in whole units"""
    if not text:
        return 0

    total = 0
    alnum_run = 0
    space_run = 0

    for ch in text:
        c = ord(ch)

        if _is_ascii_alnum(c):
            total += space_run * _RUN_CHAR
            space_run = 0
            alnum_run += 1
            continue
        if ch in _WHITESPACE:
            total += alnum_run * _RUN_CHAR
            alnum_run = 0
            space_run += 1
            continue

        # Script change: flush both runs
        total += (alnum_run + space_run) * _RUN_CHAR
        alnum_run = space_run = 0

        if c > 0xFFFF or _is_hangul(c) or _is_cjk(c):
            total += _WIDE
        elif _is_kana(c):
            total += _KANA
        elif ch in _CODE_PUNCT:
            total += _PUNCT
        else:
            total += _WIDE

    total += (alnum_run + space_run) * _RUN_CHAR
    return -(-total // _SCALE)
