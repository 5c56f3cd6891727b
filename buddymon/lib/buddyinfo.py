# This file is part of buddymon.
# Copyright (C) 2026  The buddymon Authors.
#
# This program is free software: you can redistribute it and/or modify it
# under the terms of the GNU Lesser General Public License as published by
# the Free Software Foundation, either version 3 of the License, or (at your
# option) any later version.  This program is distributed in the hope that it
# will be useful, but WITHOUT ANY WARRANTY; without even the implied warranty
# of MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the GNU Lesser
# General Public License for more details.  You should have received a copy
# of the GNU Lesser General Public License along with this program.  If not,
# see <http://www.gnu.org/licenses/>.

"""Parser for the kernel's /proc/buddyinfo memory fragmentation counters.

Sample, not every row is present on every machine. See
https://www.kernel.org/doc/Documentation/filesystems/proc.txt

    Node 0, zone      DMA      1      1      1      0      2      1      1      0      1      1      3
    Node 0, zone    DMA32      3      6      5      3      3      4      2      4      3      1    270
    Node 0, zone   Normal  23821   5715     90     16      8      4      9      2      0      0      0
    Node 1, zone   Normal   3888  10304    405    139     50     59     38     19      4      2      9
"""

from collections import namedtuple

from buddymon.lib.errors import SourceReadError, ValidationError

BUDDYINFO = '/proc/buddyinfo'

FIELD_COUNT = 15  # "Node", "0,", "zone", "<zone>" followed by 11 free-block counts
PAGE_ORDERS = 11

FIELD_COUNT_MISMATCH = 'field-count-mismatch'
NON_NUMERIC_FIELD = 'non-numeric-field'

# run_counts[i] is the number of free blocks of 2^i contiguous pages
ParsedRecord = namedtuple('ParsedRecord', ['node', 'zone', 'run_counts'])


def parse_line(line):
    """Turns one buddyinfo line into a ParsedRecord, raises ValidationError."""
    fields = line.split()
    if len(fields) != FIELD_COUNT:
        raise ValidationError(FIELD_COUNT_MISMATCH, line, expected=FIELD_COUNT, actual=len(fields))

    counts = tuple(fields[4:])
    for count in counts:
        # str.isdigit() accepts things like superscripts, int() does not
        if not (count.isascii() and count.isdigit()):
            raise ValidationError(NON_NUMERIC_FIELD, line)

    # the node is printed with a trailing comma, e.g. "0,"
    return ParsedRecord(node=fields[1][0], zone=fields[3], run_counts=counts)


def parse_lines(lines):
    """Parses every line, the first bad line aborts the whole lot.

    Blank lines at the end of the file are dropped, a blank line anywhere
    else is a field-count mismatch like any other short line.
    """
    lines = list(lines)
    while lines and not lines[-1].strip():
        lines.pop()
    return [parse_line(line) for line in lines]


def read_lines(path=BUDDYINFO):
    try:
        with open(path, 'r') as buddyinfo:
            return buddyinfo.read().splitlines()
    except (OSError, UnicodeDecodeError) as e:
        raise SourceReadError(path, e)
