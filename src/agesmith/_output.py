import sys
import traceback


class Output(object):
    """Manage the output of the various parts of agesmith to achieve
    consistency wrt to formatting and display.

    Everything written here is meant for humans. Decrypted data and
    listings go directly to stdout and never pass through this object.
    """

    enable_debug = False

    def __init__(self, backend):
        self.backend = backend

    def line(self, message, debug=False, **format):
        if debug and not self.enable_debug:
            return
        self.backend.line(message, **format)

    def annotate(self, message, debug=False, **format):
        if debug and not self.enable_debug:
            return
        self.line(message, **format)

    def tabular(self, key, value, separator=": ", debug=False, **kw):
        if debug and not self.enable_debug:
            return
        message = key.rjust(10) + separator + value
        self.annotate(message, **kw)

    def step(self, context, message, debug=False, **format):
        if debug and not self.enable_debug:
            return
        _format = {"bold": True}
        _format.update(format)
        self.line("{}: {}".format(context, message), **_format)

    def warn(self, message, debug=False):
        if debug and not self.enable_debug:
            return
        self.step("WARNING", message, yellow=True)

    def error(self, message, exc_info=None, debug=False):
        if debug and not self.enable_debug:
            return
        self.step("ERROR", message, red=True)
        if exc_info:
            if self.enable_debug:
                out = traceback.format_exception(*exc_info)
            else:
                etype, value, _ = exc_info
                out = traceback.format_exception_only(etype, value)
            out = "".join(out)
            out = "      " + out.replace("\n", "\n      ") + "\n"
            self.backend.write(out, red=True)


class TerminalBackend(object):
    def __init__(self, file=None):
        import py.io

        self._tw = py.io.TerminalWriter(file or sys.stderr)

    def line(self, message, **format):
        self._tw.line(message, **format)

    def write(self, content, **format):
        self._tw.write(content, **format)


class NullBackend(object):
    def line(self, message, **format):
        pass

    def write(self, content, **format):
        pass


class RecordingBackend(object):
    """Keep plain output lines in memory, for tests."""

    def __init__(self):
        self.lines = []

    def line(self, message, **format):
        self.lines.extend(message.split("\n"))

    def write(self, content, **format):
        self.lines.extend(content.rstrip("\n").split("\n"))

    @property
    def text(self):
        return "\n".join(self.lines)


output = Output(NullBackend())
