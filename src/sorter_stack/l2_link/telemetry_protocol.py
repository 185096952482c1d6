"""
telemetry_protocol.py
=====================
Central definitions of the text protocol the robot's scripts print back to us.

This file is the single source of truth for:
- the recognised line prefixes (matched case-insensitively),
- the acknowledgement pattern "RUN <name> END",
- the quantity limits applied to counts reported by the vision step.

Other modules should import from here:
- telemetry_decode.py → to split and classify received lines.

Recognised lines (one logical message per fragment):

    STEP EyesLocate DONE cnt=<int>     preferred item count for the cycle
    DATA EyesWorkpCount=<int>          fallback item count
    STEP Place DONE color=<RED|GREEN|BLUE>
    RUN <name> END                     script <name> finished
"""

import re

PREFIX_EYES_LOCATE = "STEP EyesLocate DONE cnt="
PREFIX_EYES_WORKP_COUNT = "DATA EyesWorkpCount="
PREFIX_PLACE_DONE = "STEP Place DONE color="

RUN_END_RE = re.compile(r"^\s*RUN\s+(?P<name>.+?)\s+END\b", re.IGNORECASE)

# Line breaks inside one delivered line: real CRLF / LF, and the two-character
# escape "\n" some scripts emit literally.
FRAGMENT_SPLIT_RE = re.compile(r"\r\n|\n|\\n")

INTEGER_RE = re.compile(r"^[+-]?\d+$")

# Reported numbers are 32-bit signed on the robot side; anything wider is noise.
INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1

QUANTITY_MIN = 1
QUANTITY_MAX = 200
QUANTITY_DEFAULT = 1
