#!/usr/bin/env python


class CollectorBase(object):
    def __init__(self, settings, logger, writer):
        self._settings = settings
        self._logger = logger
        self._writer = writer

    def __call__(self, *arg):
        """
        any collector needs to implement it to run one collection and hand the result to the writer
        Returns: whatever the collector collected

        """
        pass

    def cleanup(self):
        """
        release the writer and anything else held across collections
        Returns:None

        """
        if self._writer:
            self._writer.close()

    @property
    def settings(self):
        return self._settings

    def update_settings(self, settings):
        """ swap in a new settings snapshot, takes effect at the next collection """
        self._settings = settings

    def replace_writer(self, writer):
        old, self._writer = self._writer, writer
        if old:
            old.close()

    # below are convenient methods available to all collectors
    def log_debug(self, msg, *args, **kwargs):
        if self._logger:
            self._logger.debug(msg, *args, **kwargs)
