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

"""InfluxDB data points built from parsed buddyinfo records"""

import time
from collections import namedtuple

import influxdb_client
from influxdb_client import WritePrecision

from buddymon.lib.buddyinfo import PAGE_ORDERS

# "1p", "2p", "4p", ... "1024p": the size in pages of each free block order
PAGE_LABELS = tuple('%dp' % (1 << order) for order in range(PAGE_ORDERS))


class Point(namedtuple('Point', ['measurement', 'tags', 'fields', 'timestamp'])):
    """One measurement point.

    Node number and zone are tags rather than fields: they are what gets
    queried on, and only tags are indexed.
    """
    __slots__ = ()

    def to_influx(self):
        point = influxdb_client.Point(self.measurement)
        for key, value in self.tags.items():
            point.tag(key, value)
        # counts are kept as the literal text the kernel printed
        for label, count in self.fields.items():
            point.field(label, count)
        if self.timestamp is not None:
            point.time(self.timestamp, WritePrecision.NS)
        return point

    def to_line(self):
        """Renders the point in InfluxDB line protocol."""
        return self.to_influx().to_line_protocol()


class Batch(object):
    """Points gathered during one polling cycle, in the order they were added."""

    def __init__(self):
        self.points = []

    def add_point(self, point):
        self.points.append(point)

    def to_lines(self):
        return '\n'.join(point.to_line() for point in self.points)

    def __len__(self):
        return len(self.points)

    def __iter__(self):
        return iter(self.points)

    def __repr__(self):
        return 'Batch(%d points)' % len(self.points)


def encode(record, measurement, static_tags):
    tags = dict(static_tags)
    # the record's own node/zone win over a global tag of the same name
    tags['node'] = record.node
    tags['zone'] = record.zone
    fields = dict(zip(PAGE_LABELS, record.run_counts))
    return Point(measurement, tags, fields, None)


def assemble(records, settings, now=None):
    """Encodes the records of one cycle into a Batch.

    Every point is stamped one nanosecond after the previous one.  Points of a
    cycle differ by node/zone anyway, but time.time_ns() is coarser than a
    nanosecond on some platforms and a store that drops tags before comparing
    timestamps would otherwise overwrite one point with another.
    """
    t0 = time.time_ns() if now is None else now
    static_tags = settings.static_tags()
    batch = Batch()
    for i, record in enumerate(records):
        point = encode(record, settings.measurement, static_tags)
        batch.add_point(point._replace(timestamp=t0 + i))
    return batch
