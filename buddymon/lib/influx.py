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

"""Writes batches of points to the InfluxDB 1.x HTTP API"""

import logging
import sys

import requests

from buddymon.lib.errors import TransportError

LOG = logging.getLogger('buddymon')

DEFAULT_TIMEOUT = 10  # seconds


class InfluxWriter(object):
    def __init__(self, url, database, user=None, password=None, timeout=DEFAULT_TIMEOUT, dryrun=False):
        self.url = url.rstrip('/')
        self.database = database
        self.user = user
        self.password = password
        self.timeout = timeout
        self.dryrun = dryrun
        self.session = requests.Session()
        if user:
            self.session.auth = (user, password or '')
        self.session.headers['Content-Type'] = 'text/plain; charset=utf-8'

    @classmethod
    def from_settings(cls, settings, dryrun=False):
        return cls(settings.url, settings.database, settings.user, settings.password, dryrun=dryrun)

    def write(self, batch, database=None):
        """Sends every point of the batch in one request, nanosecond precision."""
        if not len(batch):
            LOG.debug('empty batch, nothing to send')
            return
        database = database or self.database
        payload = batch.to_lines()
        if self.dryrun:
            LOG.info('dry run, not sending %d points to %s', len(batch), database)
            sys.stdout.write('Would have sent:\n%s\n' % payload)
            return

        LOG.debug('sending %d points to %s/write?db=%s', len(batch), self.url, database)
        try:
            response = self.session.post('%s/write' % self.url,
                                         params={'db': database, 'precision': 'ns'},
                                         data=payload.encode('utf-8'),
                                         timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError('error when sending to server %s: %s' % (self.url, e))

        if not 200 <= response.status_code < 300:
            raise TransportError('server %s rejected write with HTTP %d: %s'
                                 % (self.url, response.status_code, response.text.strip()),
                                 status=response.status_code)
        LOG.info('sent %d points, %d bytes, got HTTP %d', len(batch), len(payload), response.status_code)

    def close(self):
        self.session.close()
