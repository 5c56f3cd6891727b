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

"""Exceptions raised while collecting and shipping buddyinfo data points"""


class BuddymonError(Exception):
    pass


class ConfigError(BuddymonError):
    """Bad command line or config file."""

    def __init__(self, message, exit_status=1):
        self.exit_status = exit_status
        super(ConfigError, self).__init__(message)


class ValidationError(BuddymonError):
    """A buddyinfo line does not match the expected layout."""

    def __init__(self, reason, line, expected=None, actual=None):
        self.reason = reason
        self.line = line
        self.expected = expected
        self.actual = actual
        if expected is not None:
            msg = '%s: found %s fields (expected %s), offending line: %r' % (reason, actual, expected, line)
        else:
            msg = '%s: offending line: %r' % (reason, line)
        super(ValidationError, self).__init__(msg)


class SourceReadError(BuddymonError):
    def __init__(self, path, cause):
        self.path = path
        self.cause = cause
        super(SourceReadError, self).__init__("can't read %s: %s" % (path, cause))


class TransportError(BuddymonError):
    def __init__(self, message, status=None):
        self.status = status
        super(TransportError, self).__init__(message)
