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

import io
import logging
import os
import shutil
import tempfile
import threading
import time
import unittest
from logging.handlers import RotatingFileHandler
from unittest import mock

import influxdb_client
import requests

import mocks
from buddymon import common_utils
from buddymon import runner
from buddymon.builtin.buddyinfo import Buddyinfo
from buddymon.lib import buddyinfo
from buddymon.lib.errors import ConfigError, SourceReadError, TransportError, ValidationError
from buddymon.lib.influx import InfluxWriter
from buddymon.lib.points import PAGE_LABELS, Batch, Point, assemble, encode

try:
    import flask
    from werkzeug.serving import make_server
    import fake_influxdb
except ImportError:
    flask = None

DMA_LINE = "Node 0, zone      DMA      1      1      1      0      2      1      1      0      1      1      3"
SAMPLE = """\
Node 0, zone      DMA      1      1      1      0      2      1      1      0      1      1      3
Node 0, zone    DMA32      3      6      5      3      3      4      2      4      3      1    270
Node 0, zone   Normal  23821   5715     90     16      8      4      9      2      0      0      0
Node 1, zone   Normal   3888  10304    405    139     50     59     38     19      4      2      9
"""
SHORT_LINE = "Node 0, zone      DMA      1      1      1      0      2      1      1      0      1      1"

T0 = 1500000000000000000

LOG = logging.getLogger('buddymon.tests')


def make_settings(**kwargs):
    values = dict(url='http://localhost:8086', database='buddyinfo', user='', password='',
                  measurement='buddyinfo', hostname='box', use_hostname=True, global_tags={},
                  interval=15, path=buddyinfo.BUDDYINFO)
    values.update(kwargs)
    return runner.Settings(**values)


class TempDirTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmpdir)

    def write_file(self, name, content):
        path = os.path.join(self.tmpdir, name)
        with open(path, 'w') as f:
            f.write(content)
        return path


class ParseLineTests(unittest.TestCase):

    def test_dma_line(self):
        record = buddyinfo.parse_line(DMA_LINE)
        self.assertEqual(record.node, "0")
        self.assertEqual(record.zone, "DMA")
        self.assertEqual(record.run_counts, ("1", "1", "1", "0", "2", "1", "1", "0", "1", "1", "3"))

    def test_every_sample_line_has_eleven_counts(self):
        for line in SAMPLE.splitlines():
            self.assertEqual(len(buddyinfo.parse_line(line).run_counts), 11, line)

    def test_counts_are_kept_verbatim(self):
        record = buddyinfo.parse_line(SAMPLE.splitlines()[2])
        self.assertEqual(record.run_counts[0], "23821")
        self.assertEqual(record.zone, "Normal")

    def test_node_is_first_character_of_token(self):
        record = buddyinfo.parse_line(DMA_LINE.replace("Node 0,", "Node 7,"))
        self.assertEqual(record.node, "7")

    def test_too_few_fields(self):
        with self.assertRaises(ValidationError) as cm:
            buddyinfo.parse_line(SHORT_LINE)
        self.assertEqual(cm.exception.reason, "field-count-mismatch")
        self.assertEqual(cm.exception.expected, 15)
        self.assertEqual(cm.exception.actual, 14)
        self.assertEqual(cm.exception.line, SHORT_LINE)

    def test_too_many_fields(self):
        with self.assertRaises(ValidationError) as cm:
            buddyinfo.parse_line(DMA_LINE + " 5")
        self.assertEqual(cm.exception.reason, "field-count-mismatch")
        self.assertEqual(cm.exception.actual, 16)

    def test_empty_line(self):
        with self.assertRaises(ValidationError) as cm:
            buddyinfo.parse_line("")
        self.assertEqual(cm.exception.actual, 0)

    def test_non_numeric_count(self):
        for bad in ("x", "-1", "1.5", "²"):
            line = DMA_LINE[:-1] + bad
            with self.assertRaises(ValidationError) as cm:
                buddyinfo.parse_line(line)
            self.assertEqual(cm.exception.reason, "non-numeric-field", bad)

    def test_parse_lines_drops_trailing_blank_lines(self):
        records = buddyinfo.parse_lines(SAMPLE.splitlines() + ["", "   "])
        self.assertEqual(len(records), 4)

    def test_parse_lines_rejects_blank_line_in_the_middle(self):
        lines = SAMPLE.splitlines()
        lines.insert(1, "")
        with self.assertRaises(ValidationError) as cm:
            buddyinfo.parse_lines(lines)
        self.assertEqual(cm.exception.reason, "field-count-mismatch")
        self.assertEqual(cm.exception.actual, 0)

    def test_parse_lines_of_blank_file(self):
        self.assertEqual(buddyinfo.parse_lines(["", ""]), [])

    def test_parse_lines_aborts_on_first_bad_line(self):
        lines = SAMPLE.splitlines()
        lines.insert(2, SHORT_LINE)
        with self.assertRaises(ValidationError):
            buddyinfo.parse_lines(lines)


class ReadLinesTests(TempDirTestCase):

    def test_read(self):
        path = self.write_file("buddyinfo", SAMPLE)
        self.assertEqual(buddyinfo.read_lines(path), SAMPLE.splitlines())

    def test_missing_file(self):
        path = os.path.join(self.tmpdir, "nope")
        with self.assertRaises(SourceReadError) as cm:
            buddyinfo.read_lines(path)
        self.assertEqual(cm.exception.path, path)
        self.assertIsInstance(cm.exception.cause, OSError)


class EncodeTests(unittest.TestCase):

    def test_page_labels(self):
        self.assertEqual(list(PAGE_LABELS),
                         ["1p", "2p", "4p", "8p", "16p", "32p", "64p", "128p", "256p", "512p", "1024p"])

    def test_dma_point(self):
        record = buddyinfo.parse_line(DMA_LINE)
        point = encode(record, "buddyinfo", {"host": "box", "dc": "east"})
        self.assertEqual(point.measurement, "buddyinfo")
        self.assertEqual(point.tags, {"node": "0", "zone": "DMA", "host": "box", "dc": "east"})
        self.assertEqual(point.fields, {"1p": "1", "2p": "1", "4p": "1", "8p": "0", "16p": "2", "32p": "1",
                                        "64p": "1", "128p": "0", "256p": "1", "512p": "1", "1024p": "3"})
        self.assertEqual(list(point.fields), list(PAGE_LABELS))
        self.assertIsNone(point.timestamp)

    def test_deterministic(self):
        record = buddyinfo.parse_line(DMA_LINE)
        self.assertEqual(encode(record, "m", {"a": "b"}), encode(record, "m", {"a": "b"}))

    def test_record_tags_win(self):
        record = buddyinfo.parse_line(DMA_LINE)
        point = encode(record, "m", {"node": "9", "zone": "HighMem"})
        self.assertEqual(point.tags, {"node": "0", "zone": "DMA"})

    def test_points_do_not_share_tags(self):
        static_tags = {"host": "box"}
        records = buddyinfo.parse_lines(SAMPLE.splitlines())
        first = encode(records[0], "m", static_tags)
        second = encode(records[3], "m", static_tags)
        self.assertEqual(static_tags, {"host": "box"})
        self.assertIsNot(first.tags, second.tags)
        self.assertEqual((first.tags["node"], first.tags["zone"]), ("0", "DMA"))
        self.assertEqual((second.tags["node"], second.tags["zone"]), ("1", "Normal"))


class LineProtocolTests(unittest.TestCase):

    def test_dma_line(self):
        point = encode(buddyinfo.parse_line(DMA_LINE), "buddyinfo", {"host": "box"})._replace(timestamp=T0)
        self.assertEqual(point.to_line(),
                         'buddyinfo,host=box,node=0,zone=DMA '
                         '1p="1",2p="1",4p="1",8p="0",16p="2",32p="1",64p="1",128p="0",256p="1",512p="1",1024p="3" '
                         '1500000000000000000')

    def test_escaping(self):
        point = Point("free pages", {"rack": "a b,c"}, {"note": 'say "hi"'}, None)
        self.assertEqual(point.to_line(), 'free\\ pages,rack=a\\ b\\,c note="say \\"hi\\""')

    def test_influx_point(self):
        point = encode(buddyinfo.parse_line(DMA_LINE), "buddyinfo", {})._replace(timestamp=T0)
        influx_point = point.to_influx()
        self.assertIsInstance(influx_point, influxdb_client.Point)
        self.assertEqual(influx_point.to_line_protocol(), point.to_line())
        self.assertTrue(point.to_line().endswith(" 1500000000000000000"))

    def test_batch_lines(self):
        batch = Batch()
        batch.add_point(Point("m", {"a": "1"}, {"f": "1"}, 1))
        batch.add_point(Point("m", {"a": "2"}, {"f": "2"}, 2))
        self.assertEqual(batch.to_lines(), 'm,a=1 f="1" 1\nm,a=2 f="2" 2')
        self.assertEqual(len(batch), 2)


class AssembleTests(unittest.TestCase):

    def test_sample_batch(self):
        records = buddyinfo.parse_lines(SAMPLE.splitlines())
        batch = assemble(records, make_settings(global_tags={"dc": "east"}), T0)
        points = list(batch)
        self.assertEqual(len(points), 4)
        self.assertEqual([p.timestamp for p in points], [T0, T0 + 1, T0 + 2, T0 + 3])
        pairs = set((p.tags["node"], p.tags["zone"]) for p in points)
        self.assertEqual(pairs, {("0", "DMA"), ("0", "DMA32"), ("0", "Normal"), ("1", "Normal")})
        for point in points:
            self.assertEqual(point.measurement, "buddyinfo")
            self.assertEqual(point.tags["host"], "box")
            self.assertEqual(point.tags["dc"], "east")

    def test_order_is_preserved(self):
        records = buddyinfo.parse_lines(SAMPLE.splitlines())
        batch = assemble(records, make_settings(), T0)
        self.assertEqual([p.fields["1p"] for p in batch], ["1", "3", "23821", "3888"])

    def test_timestamps_step_even_when_tags_match(self):
        record = buddyinfo.parse_line(DMA_LINE)
        batch = assemble([record, record, record], make_settings(), T0)
        timestamps = [p.timestamp for p in batch]
        self.assertEqual(timestamps, [T0, T0 + 1, T0 + 2])
        self.assertEqual(len(set((tuple(sorted(p.tags.items())), p.timestamp) for p in batch)), 3)

    def test_uses_current_time(self):
        with mock.patch("buddymon.lib.points.time.time_ns", return_value=42):
            batch = assemble(buddyinfo.parse_lines(SAMPLE.splitlines()), make_settings())
        self.assertEqual([p.timestamp for p in batch], [42, 43, 44, 45])

    def test_empty(self):
        self.assertEqual(len(assemble([], make_settings(), T0)), 0)


class SettingsTests(unittest.TestCase):

    def test_host_tag(self):
        settings = make_settings(global_tags={"dc": "east"})
        self.assertEqual(settings.static_tags(), {"dc": "east", "host": "box"})

    def test_no_host_tag(self):
        settings = make_settings(use_hostname=False, global_tags={"dc": "east"})
        self.assertEqual(settings.static_tags(), {"dc": "east"})

    def test_hostname_overrides_host_tag(self):
        settings = make_settings(global_tags={"host": "other"})
        self.assertEqual(settings.static_tags(), {"host": "box"})

    def test_static_tags_is_a_copy(self):
        settings = make_settings(global_tags={"dc": "east"})
        settings.static_tags()["dc"] = "west"
        self.assertEqual(settings.global_tags, {"dc": "east"})


class BuddyinfoCollectorTests(TempDirTestCase):

    def make_collector(self, content, writer=None, **kwargs):
        path = self.write_file("buddyinfo", content)
        self.writer = writer or mocks.Writer()
        self.clock = mocks.Clock(T0)
        settings = make_settings(path=path, **kwargs)
        return Buddyinfo(settings, LOG, self.writer, clock=self.clock)

    def test_cycle(self):
        collector = self.make_collector(SAMPLE, database="fragdb")
        batch = collector()
        self.assertEqual(len(self.writer.writes), 1)
        database, written = self.writer.writes[0]
        self.assertEqual(database, "fragdb")
        self.assertIs(written, batch)
        self.assertEqual([p.timestamp for p in batch], [T0, T0 + 1, T0 + 2, T0 + 3])

    def test_malformed_line_sends_nothing(self):
        collector = self.make_collector(SAMPLE + SHORT_LINE + "\n")
        with self.assertRaises(ValidationError):
            collector()
        self.assertEqual(self.writer.writes, [])

    def test_missing_file(self):
        collector = self.make_collector(SAMPLE)
        collector.update_settings(collector.settings._replace(path=os.path.join(self.tmpdir, "gone")))
        with self.assertRaises(SourceReadError):
            collector()
        self.assertEqual(self.writer.writes, [])

    def test_transport_error_propagates(self):
        collector = self.make_collector(SAMPLE, writer=mocks.Writer(TransportError("down")))
        with self.assertRaises(TransportError):
            collector()

    def test_updated_settings_apply_to_next_cycle(self):
        collector = self.make_collector(SAMPLE)
        collector.update_settings(collector.settings._replace(measurement="frag", use_hostname=False))
        batch = collector()
        self.assertEqual(set(p.measurement for p in batch), {"frag"})
        self.assertNotIn("host", list(batch)[0].tags)

    def test_replace_writer_closes_old_one(self):
        collector = self.make_collector(SAMPLE)
        old = self.writer
        new = mocks.Writer()
        collector.replace_writer(new)
        collector()
        self.assertTrue(old.closed)
        self.assertEqual(old.writes, [])
        self.assertEqual(len(new.writes), 1)

    def test_cleanup_closes_writer(self):
        collector = self.make_collector(SAMPLE)
        collector.cleanup()
        self.assertTrue(self.writer.closed)


class CollectorLoopTests(unittest.TestCase):

    def test_run_once_success(self):
        loop = runner.CollectorLoop(mocks.Collector([None]), 15, LOG)
        self.assertTrue(loop.run_once())

    def test_run_once_logs_known_errors(self):
        error = ValidationError("field-count-mismatch", SHORT_LINE, expected=15, actual=14)
        loop = runner.CollectorLoop(mocks.Collector([error]), 15, LOG)
        with self.assertLogs("buddymon.tests", level="ERROR") as cm:
            self.assertFalse(loop.run_once())
        self.assertIn("field-count-mismatch", cm.output[0])

    def test_run_once_logs_unexpected_errors(self):
        loop = runner.CollectorLoop(mocks.Collector([KeyError("x")]), 15, LOG)
        with self.assertLogs("buddymon.tests", level="ERROR") as cm:
            self.assertFalse(loop.run_once())
        self.assertIn("failed to execute collector", cm.output[0])

    def test_before_cycle_failure_does_not_stop_collection(self):
        collector = mocks.Collector([None])
        loop = runner.CollectorLoop(collector, 15, LOG, before_cycle=mock.Mock(side_effect=RuntimeError))
        with self.assertLogs("buddymon.tests", level="ERROR"):
            self.assertTrue(loop.run_once())
        self.assertEqual(collector.calls, 1)

    def test_run_survives_failures(self):
        collector = mocks.Collector([SourceReadError("/proc/buddyinfo", OSError("gone")),
                                     TransportError("down"),
                                     None])
        loop = runner.CollectorLoop(collector, 1, LOG)
        collector.loop = loop
        with mock.patch.object(loop, "sleep_responsively") as sleep:
            with self.assertLogs("buddymon.tests", level="INFO"):
                loop.run()
        self.assertEqual(collector.calls, 3)
        self.assertTrue(collector.cleaned_up)
        self.assertEqual(sleep.call_count, 3)

    def test_sleep_in_slices(self):
        loop = runner.CollectorLoop(mocks.Collector([]), 12, LOG)
        now = [1000.0]

        def fake_sleep(sec):
            now[0] += sec

        with mock.patch("buddymon.runner.time.time", side_effect=lambda: now[0]), \
                mock.patch("buddymon.runner.time.sleep", side_effect=fake_sleep) as sleep:
            loop.sleep_responsively(1000.0)
        self.assertEqual([c[0][0] for c in sleep.call_args_list], [5, 5, 2])

    def test_no_sleep_after_exit(self):
        loop = runner.CollectorLoop(mocks.Collector([]), 60, LOG)
        loop.signal_exit()
        with mock.patch("buddymon.runner.time.sleep") as sleep:
            loop.sleep_responsively(time.time())
        sleep.assert_not_called()


class InfluxWriterTests(unittest.TestCase):

    def setUp(self):
        self.batch = assemble(buddyinfo.parse_lines(SAMPLE.splitlines()), make_settings(), T0)

    def mock_post(self, writer, status=204, text=""):
        response = mock.Mock(status_code=status, text=text)
        patcher = mock.patch.object(writer.session, "post", return_value=response)
        self.addCleanup(patcher.stop)
        return patcher.start()

    def test_write(self):
        writer = InfluxWriter("http://influx:8086/", "buddyinfo")
        post = self.mock_post(writer)
        writer.write(self.batch)
        post.assert_called_once_with("http://influx:8086/write",
                                     params={"db": "buddyinfo", "precision": "ns"},
                                     data=self.batch.to_lines().encode("utf-8"),
                                     timeout=10)
        self.assertIsNone(writer.session.auth)

    def test_database_override(self):
        writer = InfluxWriter("http://influx:8086", "buddyinfo")
        post = self.mock_post(writer)
        writer.write(self.batch, "other")
        self.assertEqual(post.call_args[1]["params"]["db"], "other")

    def test_basic_auth(self):
        writer = InfluxWriter.from_settings(make_settings(user="writer", password="secret"))
        self.assertEqual(writer.session.auth, ("writer", "secret"))

    def test_rejected_write(self):
        writer = InfluxWriter("http://influx:8086", "buddyinfo")
        self.mock_post(writer, status=401, text='{"error":"authorization failed"}')
        with self.assertRaises(TransportError) as cm:
            writer.write(self.batch)
        self.assertEqual(cm.exception.status, 401)
        self.assertIn("authorization failed", str(cm.exception))

    def test_connection_error(self):
        writer = InfluxWriter("http://influx:8086", "buddyinfo")
        with mock.patch.object(writer.session, "post", side_effect=requests.ConnectionError("refused")):
            with self.assertRaises(TransportError) as cm:
                writer.write(self.batch)
        self.assertIsNone(cm.exception.status)

    def test_empty_batch(self):
        writer = InfluxWriter("http://influx:8086", "buddyinfo")
        post = self.mock_post(writer)
        writer.write(Batch())
        post.assert_not_called()

    def test_dry_run(self):
        writer = InfluxWriter("http://influx:8086", "buddyinfo", dryrun=True)
        post = self.mock_post(writer)
        with mock.patch("sys.stdout", new_callable=io.StringIO) as stdout:
            writer.write(self.batch)
        post.assert_not_called()
        self.assertIn("Would have sent:", stdout.getvalue())
        self.assertIn("buddyinfo,host=box,node=1,zone=Normal", stdout.getvalue())


@unittest.skipUnless(flask, "Flask not installed")
class FakeInfluxDBTests(unittest.TestCase):
    """Writes go over HTTP to the fake InfluxDB server."""

    def setUp(self):
        del fake_influxdb.WRITES[:]
        self.addCleanup(setattr, fake_influxdb, "RESPONSE_CODE", fake_influxdb.RESPONSE_CODE)
        server = make_server("127.0.0.1", 0, fake_influxdb.app)
        thread = threading.Thread(target=server.serve_forever)
        thread.daemon = True
        thread.start()
        self.addCleanup(server.server_close)
        self.addCleanup(server.shutdown)
        self.writer = InfluxWriter("http://127.0.0.1:%d" % server.server_port, "buddyinfo")
        self.writer.session.trust_env = False  # never go through an http_proxy
        self.addCleanup(self.writer.close)
        self.batch = assemble(buddyinfo.parse_lines(SAMPLE.splitlines()), make_settings(), T0)

    def test_normal(self):
        fake_influxdb.RESPONSE_CODE = 204
        self.writer.write(self.batch)
        self.assertEqual(len(fake_influxdb.WRITES), 1)
        db, precision, lines = fake_influxdb.WRITES[0]
        self.assertEqual((db, precision), ("buddyinfo", "ns"))
        self.assertEqual(lines, self.batch.to_lines().splitlines())

    def test_error(self):
        fake_influxdb.RESPONSE_CODE = 500
        with self.assertRaises(TransportError) as cm:
            self.writer.write(self.batch)
        self.assertEqual(cm.exception.status, 500)

    def test_database_required(self):
        response = fake_influxdb.app.test_client().post("/write", data="m f=1")
        self.assertEqual(response.status_code, 400)


class ParseTagsTests(unittest.TestCase):

    def test_tags(self):
        self.assertEqual(runner.parse_tags(["dc=east", "rack=r1,role=db"]),
                         {"dc": "east", "rack": "r1", "role": "db"})

    def test_invalid_tag(self):
        for bad in (["nope"], ["=x"], ["a b=c"]):
            with self.assertRaises(ConfigError) as cm:
                runner.parse_tags(bad)
            self.assertEqual(cm.exception.exit_status, 8)

    def test_duplicate_tag(self):
        with self.assertRaises(ConfigError):
            runner.parse_tags(["dc=east", "dc=west"])


class ResolveSettingsTests(TempDirTestCase):

    def setUp(self):
        super(ResolveSettingsTests, self).setUp()
        patcher = mock.patch("buddymon.runner.default_hostname", return_value="box")
        patcher.start()
        self.addCleanup(patcher.stop)

    def options(self, *args):
        options, _ = runner.parse_cmdline(["buddymon"] + list(args))
        return options

    def config(self, content):
        return runner.load_config_file(self.write_file("buddymon.conf", content))

    def test_defaults(self):
        settings = runner.resolve_settings(self.options())
        self.assertEqual(settings, runner.Settings(url="http://localhost:8086", database="buddyinfo",
                                                   user="", password="", measurement="buddyinfo",
                                                   hostname="box", use_hostname=True, global_tags={},
                                                   interval=15, path="/proc/buddyinfo"))

    def test_command_line(self):
        settings = runner.resolve_settings(self.options(
            "-U", "http://db:8086", "-d", "frag", "-u", "me", "-p", "pw", "-m", "mem",
            "-h", "web1", "-H", "-t", "dc=east", "-i", "30", "-f", "/tmp/buddyinfo"))
        self.assertEqual(settings.url, "http://db:8086")
        self.assertEqual(settings.database, "frag")
        self.assertEqual((settings.user, settings.password), ("me", "pw"))
        self.assertEqual(settings.measurement, "mem")
        self.assertEqual(settings.hostname, "web1")
        self.assertFalse(settings.use_hostname)
        self.assertEqual(settings.global_tags, {"dc": "east"})
        self.assertEqual(settings.interval, 30)
        self.assertEqual(settings.path, "/tmp/buddyinfo")

    def test_config_file_beats_defaults(self):
        config = self.config("[base]\nurl = http://cfg:8086\ninterval = 60\nno_hostname = true\n"
                             "[tags]\nDataCenter = east\n")
        settings = runner.resolve_settings(self.options(), config)
        self.assertEqual(settings.url, "http://cfg:8086")
        self.assertEqual(settings.interval, 60)
        self.assertFalse(settings.use_hostname)
        self.assertEqual(settings.global_tags, {"DataCenter": "east"})
        self.assertEqual(settings.database, "buddyinfo")

    def test_command_line_beats_config_file(self):
        config = self.config("[base]\nurl = http://cfg:8086\ninterval = 60\n")
        settings = runner.resolve_settings(self.options("-U", "http://cli:8086"), config)
        self.assertEqual(settings.url, "http://cli:8086")
        self.assertEqual(settings.interval, 60)

    def test_config_tags_beat_command_line_tags(self):
        config = self.config("[tags]\ndc = east\n")
        settings = runner.resolve_settings(self.options("-t", "dc=west", "-t", "rack=1"), config)
        self.assertEqual(settings.global_tags, {"dc": "east"})

    def test_command_line_tags_without_config_tags(self):
        config = self.config("[base]\ndatabase = frag\n")
        settings = runner.resolve_settings(self.options("-t", "dc=west"), config)
        self.assertEqual(settings.global_tags, {"dc": "west"})

    def test_config_tag_without_value(self):
        config = self.config("[base]\n[tags]\nrack =\n")
        with self.assertRaises(ConfigError) as cm:
            runner.resolve_settings(self.options("-H"), config)
        self.assertEqual(cm.exception.exit_status, 8)
        self.assertIn('"rack="', str(cm.exception))

    def test_config_tag_with_invalid_value(self):
        config = self.config("[tags]\nrack = a b\n")
        with self.assertRaises(ConfigError) as cm:
            runner.resolve_settings(self.options(), config)
        self.assertEqual(cm.exception.exit_status, 8)

    def test_bad_interval(self):
        with self.assertRaises(ConfigError):
            runner.resolve_settings(self.options("-i", "0"))
        with self.assertRaises(ConfigError):
            runner.resolve_settings(self.options(), self.config("[base]\ninterval = soon\n"))

    def test_bad_config_file(self):
        with self.assertRaises(ConfigError):
            self.config("url = http://cfg:8086\n")

    def test_find_config_file(self):
        path = self.write_file("buddymon.conf", "[base]\n")
        self.assertEqual(runner.find_config_file(path), path)
        with mock.patch("buddymon.runner.CONFIG_SEARCH_PATH", (self.tmpdir,)):
            self.assertEqual(runner.find_config_file(), path)
        with mock.patch("buddymon.runner.CONFIG_SEARCH_PATH", (os.path.join(self.tmpdir, "x"),)):
            self.assertIsNone(runner.find_config_file())
        with self.assertRaises(ConfigError):
            runner.find_config_file(os.path.join(self.tmpdir, "missing.conf"))


class ReloadTests(TempDirTestCase):

    def setUp(self):
        super(ReloadTests, self).setUp()
        self.path = self.write_file("buddymon.conf", "[base]\nmeasurement = one\ninterval = 10\n")
        self.options, _ = runner.parse_cmdline(["buddymon", "-c", self.path])
        settings = runner.resolve_settings(self.options, runner.load_config_file(self.path))
        self.writer = mocks.Writer()
        self.collector = Buddyinfo(settings, LOG, self.writer)
        self.loop = runner.CollectorLoop(self.collector, settings.interval, LOG)
        self.watcher = runner.ConfigWatcher(self.path)

    def rewrite(self, content):
        with open(self.path, "w") as f:
            f.write(content)
        mtime = self.watcher.mtime + 10
        os.utime(self.path, (mtime, mtime))

    def test_unchanged(self):
        self.assertFalse(self.watcher.changed())
        runner.reload_settings(self.watcher, self.options, self.collector, self.loop)
        self.assertEqual(self.collector.settings.measurement, "one")

    def test_reload(self):
        self.rewrite("[base]\nmeasurement = two\ninterval = 20\n")
        with self.assertLogs("buddymon", level="INFO"):
            runner.reload_settings(self.watcher, self.options, self.collector, self.loop)
        self.assertEqual(self.collector.settings.measurement, "two")
        self.assertEqual(self.loop.interval, 20)
        self.assertFalse(self.writer.closed)
        self.assertFalse(self.watcher.changed())

    def test_reload_new_url_replaces_writer(self):
        self.rewrite("[base]\nurl = http://elsewhere:8086\n")
        with self.assertLogs("buddymon", level="INFO"):
            runner.reload_settings(self.watcher, self.options, self.collector, self.loop)
        self.assertTrue(self.writer.closed)
        self.assertEqual(self.collector.settings.url, "http://elsewhere:8086")

    def test_bad_reload_keeps_settings(self):
        self.rewrite("[base]\ninterval = -1\n")
        with self.assertLogs("buddymon", level="ERROR"):
            runner.reload_settings(self.watcher, self.options, self.collector, self.loop)
        self.assertEqual(self.collector.settings.measurement, "one")
        self.assertEqual(self.loop.interval, 10)

    def test_bad_tag_reload_keeps_settings(self):
        self.rewrite("[base]\nmeasurement = two\n[tags]\nrack =\n")
        with self.assertLogs("buddymon", level="ERROR") as cm:
            runner.reload_settings(self.watcher, self.options, self.collector, self.loop)
        self.assertIn("keeping previous settings", cm.output[0])
        self.assertEqual(self.collector.settings.measurement, "one")
        self.assertEqual(self.collector.settings.global_tags, {})


class MainTests(TempDirTestCase):

    def setUp(self):
        super(MainTests, self).setUp()
        handlers = list(runner.LOG.handlers)
        level = runner.LOG.level
        self.addCleanup(setattr, runner.LOG, "handlers", handlers)
        self.addCleanup(runner.LOG.setLevel, level)
        self.config = self.write_file("buddymon.conf", "[base]\nhostname = box\n")

    def test_once_dry_run(self):
        path = self.write_file("buddyinfo", SAMPLE)
        with mock.patch("sys.stdout", new_callable=io.StringIO) as stdout:
            status = runner.main(["buddymon", "-c", self.config, "-f", path, "--once", "--dry-run"])
        self.assertEqual(status, 0)
        self.assertIn("Would have sent:", stdout.getvalue())
        self.assertIn("buddyinfo,host=box,node=0,zone=DMA32 ", stdout.getvalue())

    def test_once_malformed_file(self):
        path = self.write_file("buddyinfo", SHORT_LINE + "\n")
        with mock.patch("sys.stdout", new_callable=io.StringIO) as stdout:
            status = runner.main(["buddymon", "-c", self.config, "-f", path, "--once", "--dry-run"])
        self.assertEqual(status, 1)
        self.assertIn("field-count-mismatch", stdout.getvalue())
        self.assertNotIn("Would have sent:", stdout.getvalue())

    def test_bad_tag(self):
        with mock.patch("sys.stderr", new_callable=io.StringIO) as stderr, \
                mock.patch("sys.stdout", new_callable=io.StringIO):
            status = runner.main(["buddymon", "-c", self.config, "-t", "nope", "--once"])
        self.assertEqual(status, 8)
        self.assertIn('Invalid tag "nope"', stderr.getvalue())

    def test_bad_config_tag(self):
        config = self.write_file("tags.conf", "[base]\n[tags]\nrack =\n")
        with mock.patch("sys.stderr", new_callable=io.StringIO) as stderr, \
                mock.patch("sys.stdout", new_callable=io.StringIO) as stdout:
            status = runner.main(["buddymon", "-c", config, "-H", "--once", "--dry-run"])
        self.assertEqual(status, 8)
        self.assertIn('Invalid tag "rack="', stderr.getvalue())
        self.assertNotIn("Would have sent:", stdout.getvalue())

    def test_bad_log_rotation_limits(self):
        for args in (["--max-bytes", "0"], ["--backup-count", "-1"]):
            with mock.patch("sys.stderr", new_callable=io.StringIO) as stderr:
                with self.assertRaises(SystemExit) as cm:
                    runner.main(["buddymon", "--once"] + args)
            self.assertEqual(cm.exception.code, 2)
            self.assertIn("must be a positive number", stderr.getvalue())

    def test_pidfile(self):
        path = self.write_file("buddyinfo", SAMPLE)
        pidfile = os.path.join(self.tmpdir, "buddymon.pid")
        with mock.patch("sys.stdout", new_callable=io.StringIO):
            runner.main(["buddymon", "-c", self.config, "-f", path, "--once", "--dry-run", "-P", pidfile])
        with open(pidfile) as f:
            self.assertEqual(f.read(), str(os.getpid()))


class SetupLoggingTests(TempDirTestCase):

    def test_stream_handler(self):
        logger = logging.getLogger("buddymon.tests.stream")
        handler = common_utils.setup_logging(logger)
        self.addCleanup(logger.removeHandler, handler)
        self.assertIsInstance(handler, logging.StreamHandler)
        self.assertEqual(logger.level, logging.INFO)

    def test_rotating_handler(self):
        logger = logging.getLogger("buddymon.tests.rotating")
        logfile = os.path.join(self.tmpdir, "buddymon.log")
        handler = common_utils.setup_logging(logger, logfile, 1024, 2, verbose=True)
        self.addCleanup(handler.close)
        self.addCleanup(logger.removeHandler, handler)
        self.assertIsInstance(handler, RotatingFileHandler)
        self.assertEqual(logger.level, logging.DEBUG)


if __name__ == '__main__':
    unittest.main()
