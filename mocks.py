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


class Writer():
    """Stands in for InfluxWriter, remembers what it was asked to write."""

    def __init__(self, error=None):
        self.error = error
        self.writes = []
        self.closed = False

    def write(self, batch, database=None):
        if self.error is not None:
            raise self.error
        self.writes.append((database, batch))

    def close(self):
        self.closed = True


class Clock():
    """Nanosecond clock that only moves when told to."""

    def __init__(self, now=1500000000000000000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ns):
        self.now += ns


class Collector():
    """Collector that runs a list of canned outcomes, one per call."""

    def __init__(self, outcomes, loop=None):
        self.outcomes = list(outcomes)
        self.calls = 0
        self.cleaned_up = False
        self.loop = loop

    def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if not self.outcomes and self.loop is not None:
            self.loop.signal_exit()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def cleanup(self):
        self.cleaned_up = True
