#!/usr/bin/env python
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
"""memory buddy info fragmentation counters for InfluxDB"""

from buddymon.lib import buddyinfo
from buddymon.lib.collectorbase import CollectorBase
from buddymon.lib.points import assemble


class Buddyinfo(CollectorBase):
    def __init__(self, settings, logger, writer, clock=None):
        super(Buddyinfo, self).__init__(settings, logger, writer)
        self._clock = clock

    def __call__(self):
        # one snapshot for the whole cycle, a reload only applies to the next one
        settings = self._settings
        lines = buddyinfo.read_lines(settings.path)
        # a single bad line drops the cycle, never send a partial batch
        records = buddyinfo.parse_lines(lines)
        now = self._clock() if self._clock else None
        batch = assemble(records, settings, now)
        self.log_debug('collected %d points from %s', len(batch), settings.path)
        self._writer.write(batch, settings.database)
        return batch
