import errno

RESET = "\x1b[0m"

BLUE = "\x1b[34m"
GREEN = "\x1b[32m"
YELLOW = "\x1b[33m"
RED = "\x1b[31m"


class Category:
    def __init__(self, name, prefix, color):
        self.name = name
        self.prefix = prefix
        self.color = color

    def __repr__(self):
        return "Category({})".format(self.name)

    def format(self, message, color=None, with_prefix=True, with_color=True):
        parts = []
        if with_prefix:
            parts.append(self.prefix)
        parts.append(message)
        rv = "".join(parts)
        if with_color:
            rv = (color or self.color) + rv + RESET
        return rv


INCOMING = Category("incoming", "< ", BLUE)
CONTROL = Category("control", "", GREEN)
ERROR = Category("error", "error: ", YELLOW)


def as_text(data):
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data).decode("utf-8", "replace")
    return data


def describe_error(exc):
    """
    Renders an exception as `<code> <description>`, where code is the errno
    name for OS level failures and the exception class name otherwise.
    """
    code = None
    if isinstance(exc, OSError) and exc.errno:
        code = errno.errorcode.get(exc.errno)
    if not code:
        code = exc.__class__.__name__
    description = exc.strerror if isinstance(exc, OSError) and exc.strerror else str(exc)
    return " ".join(part for part in (code, description) if part)


def disconnected(code, reason=None):
    rv = "Disconnected (code: {}".format(code)
    if reason:
        rv += ', reason: "{}"'.format(reason)
    return rv + ")"


def connected():
    return "Connected (press CTRL+C to quit)"


def listening(port):
    return "Listening on port {} (press CTRL+C to quit)".format(port)


def client_connected():
    return "Client connected"


def unknown_command(command):
    return "unknown command: {}".format(command)
