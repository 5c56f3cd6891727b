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
"""Polls /proc/buddyinfo and writes the fragmentation counters to InfluxDB."""

import configparser
import logging
import os
import re
import signal
import socket
import sys
import time
from collections import namedtuple
from optparse import OptionParser

from buddymon import common_utils
from buddymon.builtin.buddyinfo import Buddyinfo
from buddymon.lib.buddyinfo import BUDDYINFO
from buddymon.lib.errors import BuddymonError, ConfigError
from buddymon.lib.influx import InfluxWriter

LOG = logging.getLogger('buddymon')

CONFIG_NAME = 'buddymon.conf'
CONFIG_SEARCH_PATH = ('.', '~/.buddymon', '/etc/buddymon')
MAX_SLEEP = 5  # seconds, how often a sleeping loop checks for shutdown
TAG_ERROR_EXIT = 8

# config constants
SECTION_BASE = 'base'
SECTION_TAGS = 'tags'

TAG_RE = re.compile(r'^[-_.a-z0-9]+=\S+$', re.IGNORECASE)


class Settings(namedtuple('Settings', ['url', 'database', 'user', 'password', 'measurement',
                                       'hostname', 'use_hostname', 'global_tags', 'interval', 'path'])):
    """Everything one collection needs, resolved from flags, config file and defaults."""
    __slots__ = ()

    def static_tags(self):
        """Tags shared by every point, a new dict on each call."""
        tags = dict(self.global_tags)
        if self.use_hostname and self.hostname:
            tags['host'] = self.hostname
        return tags


def default_hostname():
    try:
        return socket.gethostname().lower()
    except OSError:
        return ''


def get_defaults():
    return {
        'url': 'http://localhost:8086',
        'database': 'buddyinfo',
        'user': '',
        'password': '',
        'measurement': 'buddyinfo',
        'hostname': default_hostname(),
        'no_hostname': False,
        'interval': 15,
        'path': BUDDYINFO,
    }


def parse_cmdline(argv):
    # -h is --hostname, so help only gets the long form
    parser = OptionParser(add_help_option=False,
                          description='Collects /proc/buddyinfo memory fragmentation '
                                      'counters and writes them to InfluxDB.')
    parser.add_option('--help', action='help', help='Show this help message and exit.')
    parser.add_option('-c', '--config', dest='config', metavar='FILE',
                      help='Config file path (default searches ./%s, ~/.buddymon/, /etc/buddymon/).' % CONFIG_NAME)
    parser.add_option('-U', '--url', dest='url', metavar='URL',
                      help='InfluxDB server URL. default=http://localhost:8086')
    parser.add_option('-d', '--database', dest='database',
                      help='InfluxDB database name to use. default=buddyinfo')
    parser.add_option('-u', '--user', dest='user',
                      help='InfluxDB username for writing.')
    parser.add_option('-p', '--password', dest='password',
                      help='InfluxDB password for user authentication.')
    parser.add_option('-m', '--measurement', dest='measurement',
                      help='InfluxDB measurement name to write. default=buddyinfo')
    parser.add_option('-h', '--hostname', dest='hostname',
                      help='Alternate hostname to use in the "host" tag (-H to bypass).')
    parser.add_option('-H', '--no-hostname', dest='no_hostname', action='store_true',
                      help='Do not add a "host" tag to the data points.')
    parser.add_option('-t', '--tag', dest='tags', action='append', default=[], metavar='TAG',
                      help='Tags to add to every point, e.g.: -t TAG=VALUE -t TAG2=VALUE,TAG3=VALUE')
    parser.add_option('-i', '--interval', dest='interval', type='int', metavar='SECONDS',
                      help='Seconds between two collections. default=15')
    parser.add_option('-f', '--buddyinfo', dest='path', metavar='FILE',
                      help='File to read the counters from. default=%s' % BUDDYINFO)
    parser.add_option('--once', dest='once', action='store_true', default=False,
                      help='Collect and send a single batch, then exit.')
    parser.add_option('--dry-run', dest='dryrun', action='store_true', default=False,
                      help='Don\'t actually send anything to InfluxDB, '
                           'just print the data points.')
    parser.add_option('-v', dest='verbose', action='store_true', default=False,
                      help='Verbose mode (log debug messages).')
    parser.add_option('-P', '--pidfile', dest='pidfile', metavar='FILE',
                      help='Write our pidfile.')
    parser.add_option('--logfile', dest='logfile',
                      help='Filename where logs are written to. default=stdout')
    parser.add_option('--max-bytes', dest='max_bytes', type='int',
                      help='Maximum bytes per a logfile.')
    parser.add_option('--backup-count', dest='backup_count', type='int',
                      help='Maximum number of logfiles to backup.')
    (options, args) = parser.parse_args(args=argv[1:])
    if options.max_bytes is not None and options.max_bytes <= 0:
        parser.error('--max-bytes must be a positive number')
    if options.backup_count is not None and options.backup_count <= 0:
        parser.error('--backup-count must be a positive number')
    if options.max_bytes and not options.backup_count:
        options.backup_count = 1
    return options, args


def parse_tags(tag_strings):
    """Turns ["a=b", "c=d,e=f"] into {"a": "b", "c": "d", "e": "f"}."""
    tags = {}
    for tagset in tag_strings:
        for tag in tagset.split(','):
            if TAG_RE.match(tag) is None:
                raise ConfigError('Invalid tag "%s", use syntax tag=value' % tag, TAG_ERROR_EXIT)
            k, v = tag.split('=', 1)
            if k in tags:
                raise ConfigError('Tag "%s" already declared.' % k, TAG_ERROR_EXIT)
            tags[k] = v
    return tags


def config_tags(items):
    """Checks the key/value pairs of a [tags] section the way parse_tags does."""
    tags = {}
    for k, v in items:
        tag = '%s=%s' % (k.strip(), v.strip())
        if not k.strip() or not v.strip() or TAG_RE.match(tag) is None:
            raise ConfigError('Invalid tag "%s" in [%s], use syntax tag = value'
                              % (tag, SECTION_TAGS), TAG_ERROR_EXIT)
        tags[k.strip()] = v.strip()
    return tags


def find_config_file(config_file=None):
    if config_file:
        if not os.path.isfile(config_file):
            raise ConfigError('No such config file: %s' % config_file)
        return config_file
    for directory in CONFIG_SEARCH_PATH:
        path = os.path.join(os.path.expanduser(directory), CONFIG_NAME)
        if os.path.isfile(path):
            return path
    return None


def load_config_file(path):
    config = configparser.ConfigParser(interpolation=None)
    config.optionxform = str  # tag names are case sensitive
    try:
        with open(path, 'r') as fp:
            config.read_file(fp)
    except (OSError, configparser.Error) as e:
        raise ConfigError('failed to read config file %s: %s' % (path, e))
    return config


def resolve_settings(options, config=None):
    """Explicit flags beat the config file, which beats the defaults."""
    defaults = get_defaults()

    def pick(name, getter='get'):
        value = getattr(options, name, None)
        if value is not None:
            return value
        if config is not None and config.has_option(SECTION_BASE, name):
            try:
                return getattr(config, getter)(SECTION_BASE, name)
            except ValueError as e:
                raise ConfigError('invalid value for "%s": %s' % (name, e))
        return defaults[name]

    if config is not None and config.has_section(SECTION_TAGS) and config.items(SECTION_TAGS):
        global_tags = config_tags(config.items(SECTION_TAGS))
    else:
        global_tags = parse_tags(getattr(options, 'tags', None) or [])

    interval = pick('interval', 'getint')
    if interval <= 0:
        raise ConfigError('interval must be a positive number of seconds, got %s' % interval)

    return Settings(url=pick('url'),
                    database=pick('database'),
                    user=pick('user'),
                    password=pick('password'),
                    measurement=pick('measurement'),
                    hostname=pick('hostname'),
                    use_hostname=not pick('no_hostname', 'getboolean'),
                    global_tags=global_tags,
                    interval=interval,
                    path=pick('path'))


class ConfigWatcher(object):
    """Notices when the config file has been modified since the last look."""

    def __init__(self, path):
        self.path = path
        self.mtime = self._getmtime()

    def _getmtime(self):
        try:
            return os.path.getmtime(self.path)
        except OSError:
            return 0

    def changed(self):
        mtime = self._getmtime()
        if mtime > self.mtime:
            self.mtime = mtime
            return True
        return False


class CollectorLoop(object):
    """Runs a collector every interval seconds, one collection at a time."""

    def __init__(self, collector, interval, logger=LOG, before_cycle=None):
        self.collector = collector
        self.interval = interval
        self.logger = logger
        self.before_cycle = before_cycle
        self.name = type(collector).__name__.lower()
        self.exit = False

    def run_once(self):
        """One collection; failures are logged, never raised.  True on success."""
        if self.before_cycle:
            try:
                self.before_cycle()
            except Exception:
                self.logger.exception('failed to refresh settings for collector %s', self.name)
        try:
            self.logger.debug('start one collection for collector %s', self.name)
            self.collector()
            self.logger.debug('finish one collection for collector %s', self.name)
        except BuddymonError as e:
            self.logger.error('collection failed for collector %s: %s', self.name, e)
            return False
        except Exception:
            self.logger.exception('failed to execute collector %s', self.name)
            return False
        return True

    def run(self):
        self.logger.info('started collector loop: %s, interval %ds', self.name, self.interval)
        while not self.exit:
            start = time.time()
            self.run_once()
            self.sleep_responsively(start)
        self.collector.cleanup()
        self.logger.info('collector loop %s exited', self.name)

    def sleep_responsively(self, start):
        end = time.time()
        sleepsec = self.interval - (end - start) if self.interval > (end - start) else 0
        while not self.exit and sleepsec > 0:
            time.sleep(min(sleepsec, MAX_SLEEP))
            end = time.time()
            sleepsec = self.interval - (end - start) if self.interval > (end - start) else 0

    def signal_exit(self):
        self.exit = True


def connection_changed(old, new):
    return (old.url, old.user, old.password) != (new.url, new.user, new.password)


def reload_settings(watcher, options, collector, loop):
    """Picks up an edited config file before the next collection."""
    if not watcher.changed():
        return
    LOG.info('reloading %s, file has changed', watcher.path)
    try:
        settings = resolve_settings(options, load_config_file(watcher.path))
    except ConfigError as e:
        LOG.error('keeping previous settings, %s', e)
        return
    if connection_changed(collector.settings, settings):
        collector.replace_writer(InfluxWriter.from_settings(settings, options.dryrun))
    collector.update_settings(settings)
    loop.interval = settings.interval
    LOG.info('settings reloaded, tags: %r', settings.static_tags())


def write_pid(pidfile):
    """Write our pid to a pidfile."""
    with open(pidfile, 'w') as f:
        f.write(str(os.getpid()))


def main(argv):
    options, args = parse_cmdline(argv)
    common_utils.setup_logging(LOG, options.logfile, options.max_bytes, options.backup_count, options.verbose)

    try:
        config_path = find_config_file(options.config)
        config = load_config_file(config_path) if config_path else None
        settings = resolve_settings(options, config)
    except ConfigError as e:
        sys.stderr.write('ERROR: %s\n' % e)
        return e.exit_status

    LOG.info('buddymon starting, config %s, url %s, database %s, measurement %s',
             config_path or '(none)', settings.url, settings.database, settings.measurement)
    LOG.info('global tags: %r', settings.static_tags())

    if options.pidfile:
        write_pid(options.pidfile)

    writer = InfluxWriter.from_settings(settings, options.dryrun)
    collector = Buddyinfo(settings, LOG, writer)
    loop = CollectorLoop(collector, settings.interval, LOG)

    if options.once:
        ok = loop.run_once()
        collector.cleanup()
        return 0 if ok else 1

    if config_path:
        watcher = ConfigWatcher(config_path)
        loop.before_cycle = lambda: reload_settings(watcher, options, collector, loop)

    # noinspection PyUnusedLocal
    def shutdown_signal(signum, frame):
        LOG.warning('shutting down, got signal %d', signum)
        loop.signal_exit()

    # gracefully handle death for normal termination paths and abnormal
    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, shutdown_signal)

    loop.run()
    return 0


def run():
    sys.exit(main(sys.argv))


if __name__ == '__main__':
    run()
