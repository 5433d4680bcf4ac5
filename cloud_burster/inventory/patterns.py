"""
Hostname Patterns

Expands compact hostname patterns such as ``cn[1,3-5].example.com,login1``
into concrete hostnames.

Grammar: tokens are separated by commas outside of brackets; each ``[...]``
group inside a token holds a comma separated list of non-negative integers
or inclusive ``a-b`` ranges. Malformed list items are skipped rather than
rejected.
"""

import re
from typing import List

_COMMA_OUTSIDE_OF_BRACKETS = re.compile(r"(?:\[+[^\[\]]*\]+|[^,])+")
_DIGIT = re.compile(r"[0-9]+")
_RANGE = re.compile(r"([0-9]+)-([0-9]+)")


def split_comma_outside_of_brackets(pattern: str) -> List[str]:
    """
    Split a pattern on the commas that are not enclosed in brackets.

    A pattern without any token returns ``[""]``.
    """
    tokens = _COMMA_OUTSIDE_OF_BRACKETS.findall(pattern)
    if not tokens:
        return [""]
    return tokens


def parse_range_list(ranges: str) -> List[int]:
    """
    Convert comma separated digits and ranges into a list of integers.

    For example, ``"1,2-4"`` is ``[1, 2, 3, 4]``.
    """
    digits: List[int] = []
    for digit_or_range in ranges.split(","):
        if _DIGIT.fullmatch(digit_or_range):
            digits.append(int(digit_or_range))
            continue

        match = _RANGE.fullmatch(digit_or_range)
        if match is None:
            # Is not a range
            continue
        begin, end = int(match.group(1)), int(match.group(2))
        digits.extend(range(begin, end + 1))
    return digits


def expand_brackets(pattern: str) -> List[str]:
    """
    Generate hostnames from the bracket groups of a single token.

    ``cn[1,2-4]`` generates cn1, cn2, cn3 and cn4. Several groups expand as
    a nested product, the first group outermost.
    """
    if pattern == "":
        return []

    out: List[str] = []
    begin_idx = -1
    for idx, char in enumerate(pattern):
        if char == "[":
            begin_idx = idx

        if char == "]" and begin_idx != -1:
            prefix, suffix = pattern[:begin_idx], pattern[idx + 1:]
            for digit in parse_range_list(pattern[begin_idx + 1:idx]):
                out.append(f"{prefix}{digit}{suffix}")
            break

    # No brackets at all
    if begin_idx == -1:
        return [pattern]

    merged: List[str] = []
    for name in out:
        names = expand_brackets(name)
        if names:
            merged.extend(names)
        else:
            merged.append(name)
    return merged


def expand_hostnames(pattern: str) -> List[str]:
    """Split a full pattern and expand every token, keeping the order"""
    hostnames: List[str] = []
    for token in split_comma_outside_of_brackets(pattern):
        hostnames.extend(expand_brackets(token))
    return hostnames
