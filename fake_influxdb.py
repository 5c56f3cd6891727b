"""
A fake InfluxDB 1.x server using Flask.

You can modify the response code of /write using the FAKE_INFLUXDB_RESPONSE
environment variable.  Run it with:

    FLASK_APP=fake_influxdb.py flask run --port 8086
"""

import os

from flask import Flask, request

app = Flask(__name__)

RESPONSE_CODE = int(os.environ.get("FAKE_INFLUXDB_RESPONSE", 204))

# (database, precision, lines) for every write request received
WRITES = []


@app.route('/ping', methods=["GET", "HEAD"])
def ping():
    return "", 204


@app.route('/write', methods=["POST"])
def write():
    db = request.args.get("db")
    if not db:
        return '{"error":"database is required"}', 400
    lines = request.get_data(as_text=True).splitlines()
    WRITES.append((db, request.args.get("precision"), lines))
    if RESPONSE_CODE >= 300:
        return '{"error":"fake failure"}', RESPONSE_CODE
    return "", RESPONSE_CODE
