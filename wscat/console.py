import sys
import asyncio
import logging
import threading

from prompt_toolkit import PromptSession

from wscat.message import INCOMING

PROMPT = "> "
CLEAR_LINE = "\r\x1b[2K"

LINE = "line"
CLOSE = "close"

log = logging.getLogger(__name__)


class Renderer:
    """
    Writes categorized messages to the output stream.

    On a terminal every message clears the input line, is written with its
    prefix and color and is followed by a fresh prompt. Anywhere else only
    incoming messages are written, raw, so the stream can be piped.
    """

    def __init__(self, stream=None, color=True, decorate=True):
        self.stream = stream or sys.stdout
        self.color = color
        self.decorate = decorate

    @property
    def interactive(self):
        # checked on every write so a redirected stream is noticed
        isatty = getattr(self.stream, "isatty", None)
        return bool(isatty and isatty())

    def _write(self, text):
        self.stream.write(text)
        self.stream.flush()

    def print(self, category, message, color=None):
        if self.interactive:
            self.clear()
            line = category.format(message, color=color,
                                   with_prefix=self.decorate,
                                   with_color=self.decorate and self.color)
            self._write(line + "\n")
            self.prompt()
        elif category is INCOMING:
            self._write(message + "\n")

    def prompt(self):
        if self.interactive and self.decorate:
            self._write(PROMPT)

    def clear(self):
        if self.interactive:
            self._write(CLEAR_LINE)


class LineSource:
    """
    Turns the input stream into `line` events followed by one `close` event.

    The stream is read on a daemon thread, each completed line is handed to
    the event loop. Lines completed while paused are dropped.
    """

    def __init__(self, events, stream=None, paused=False):
        self.events = events
        self.stream = stream or sys.stdin
        self.paused = paused
        self.closed = False
        self.loop = None
        self.thread = None

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    def start(self, loop=None):
        self.loop = loop or asyncio.get_running_loop()
        self.thread = threading.Thread(target=self._reader, name="wscat-stdin", daemon=True)
        self.thread.start()

    def _reader(self):
        while True:
            try:
                line = self.stream.readline()
            except (OSError, ValueError) as e:
                log.debug("input stream failed: %s", e)
                line = ""
            if not line:
                break
            if not self._dispatch(self.push, line.rstrip("\r\n")):
                return
        self._dispatch(self.close)

    def _dispatch(self, callback, *args):
        try:
            self.loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # loop already shut down
            return False
        return True

    def push(self, line):
        if self.closed:
            return
        if self.paused:
            log.debug("dropping input while paused: %r", line)
            return
        self.events.put_nowait((LINE, None, line))

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.events.put_nowait((CLOSE, None, None))


async def ask_passphrase(message="Passphrase: "):
    session = PromptSession()
    return await session.prompt_async(message, is_password=True)
