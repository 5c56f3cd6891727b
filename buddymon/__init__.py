"""buddymon: ship /proc/buddyinfo fragmentation counters to InfluxDB"""

__version__ = '0.3.0'
