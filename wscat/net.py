import asyncio
import logging

from websockets.asyncio.client import connect
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException

from wscat import message
from wscat.message import INCOMING, CONTROL, ERROR

OPEN = "open"
ACCEPT = "accept"
MESSAGE = "message"
DISCONNECT = "disconnect"
FAILURE = "failure"

ABNORMAL_CLOSURE = 1006
# close codes sent when the local side fails the connection
PROTOCOL_FAILURES = (1002, 1003, 1007, 1008, 1009, 1010, 1011)

EXIT_OK = 0
EXIT_ERROR = 1

TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)

log = logging.getLogger(__name__)


def close_code(connection):
    code = connection.close_code
    return ABNORMAL_CLOSURE if code is None else code


class Bridge:
    """
    Serializes terminal and connection events into one processor loop.

    Producers put `(kind, connection, payload)` tuples on `events`; the
    processor calls `on_<kind>` for each in turn until a handler exits.
    """

    def __init__(self, session, renderer, console=None):
        self.session = session
        self.renderer = renderer
        self.events = asyncio.Queue()
        self.console = console
        self.running = False
        self.exit_code = None
        self.tasks = []
        # connections closed on request, not failed
        self.closing = set()

    def exit(self, code):
        self.running = False
        self.exit_code = code

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self.tasks.append(task)
        return task

    async def _processor(self):
        self.running = True
        while self.running:
            kind, connection, payload = await self.events.get()
            log.debug("processing %s event: %r", kind, payload)
            handler = getattr(self, "on_" + kind)
            try:
                await handler(connection, payload)
            except Exception as e:
                log.exception("error processing %s event: %r - %s", kind, payload, str(e))
        log.debug("processor shutdown with exit code %s", self.exit_code)
        return self.exit_code

    async def _pump(self, connection):
        try:
            async for data in connection:
                await self.events.put((MESSAGE, connection, data))
        except ConnectionClosedError as e:
            failed = e.sent is not None and e.sent.code in PROTOCOL_FAILURES and not e.rcvd_then_sent
            if failed and connection not in self.closing:
                await self.events.put((FAILURE, connection, e))
        except ConnectionClosed:
            pass
        self.closing.discard(connection)
        log.info("connection closed: %s %s", close_code(connection), connection.close_reason)
        await self.events.put((DISCONNECT, connection, (close_code(connection), connection.close_reason)))

    async def shutdown(self):
        for task in self.tasks:
            if task is asyncio.current_task():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.tasks = []

    async def send_line(self, connection, line):
        if self.session.slash and line.startswith("/"):
            await self.command(connection, line)
        else:
            await connection.send(line)

    async def command(self, connection, line):
        parts = line.split(" ", 2)
        name = parts[0]
        args = parts[1:]

        if name == "/ping":
            await connection.ping(" ".join(args) or None)
        elif name == "/pong":
            await connection.pong(" ".join(args))
        elif name == "/close":
            code = 1000
            if args:
                try:
                    code = int(args[0])
                except ValueError:
                    self.renderer.print(ERROR, "invalid close code: {}".format(args[0]))
                    return
            reason = args[1] if len(args) > 1 else ""
            self.closing.add(connection)
            try:
                await connection.close(code, reason)
            except WebSocketException as e:
                self.closing.discard(connection)
                self.renderer.print(ERROR, message.describe_error(e))
        else:
            self.renderer.print(ERROR, message.unknown_command(name))

    async def on_message(self, connection, data):
        self.renderer.print(INCOMING, message.as_text(data))


class ClientBridge(Bridge):
    """Owns the one outbound connection of connect mode."""

    def __init__(self, session, renderer, console=None, connect=connect):
        super(ClientBridge, self).__init__(session, renderer, console)
        self.connect = connect
        self.connection = None

    async def run(self):
        kwargs = self.session.connect_kwargs()
        self._spawn(self._connector(kwargs))
        try:
            return await self._processor()
        finally:
            await self.shutdown()

    async def _connector(self, kwargs):
        url = self.session.url
        log.info("connecting to %s", url)
        try:
            connection = await self.connect(url, **kwargs)
        except TRANSPORT_ERRORS as e:
            log.info("connect to %s failed: %s", url, e)
            await self.events.put((FAILURE, None, e))
            return
        await self.events.put((OPEN, connection, None))
        await self._pump(connection)

    def _close_later(self, connection):
        def _close():
            self._spawn(connection.close())
        asyncio.get_running_loop().call_later(self.session.wait, _close)

    async def on_open(self, connection, _):
        self.connection = connection
        if self.session.is_execute:
            try:
                await connection.send(self.session.execute)
            except ConnectionClosed:
                log.debug("connection closed before sending %r", self.session.execute)
                return
            self._close_later(connection)
            return

        self.renderer.print(CONTROL, message.connected())
        if self.console is not None:
            self.console.start()

    async def on_line(self, connection, line):
        if self.connection is None:
            return
        try:
            await self.send_line(self.connection, line)
        except ConnectionClosed:
            log.debug("dropping input, connection is closed")
        self.renderer.prompt()

    async def on_close(self, connection, _):
        if self.connection is not None:
            await self.connection.close()
        self.renderer.clear()
        self.exit(EXIT_OK)

    async def on_disconnect(self, connection, payload):
        code, reason = payload
        if not self.session.is_execute:
            self.renderer.print(CONTROL, message.disconnected(code, reason))
        self.renderer.clear()
        self.exit(EXIT_OK)

    async def on_failure(self, connection, exc):
        self.renderer.print(ERROR, message.describe_error(exc))
        self.exit(EXIT_ERROR)


class ServerBridge(Bridge):
    """Listens on a port and serves at most one peer at a time."""

    def __init__(self, session, renderer, console=None, host=None):
        super(ServerBridge, self).__init__(session, renderer, console)
        self.host = host
        self.server = None
        self.listening = asyncio.Event()

    async def run(self):
        port = self.session.port
        if self.console is not None:
            self.console.pause()
            self.console.start()
        try:
            self.server = await serve(self._on_connection, self.host, port)
        except TRANSPORT_ERRORS as e:
            log.info("listen on %s failed: %s", port, e)
            self.renderer.print(ERROR, message.describe_error(e))
            return EXIT_ERROR

        log.info("listening on %s:%s", self.host or "*", port)
        self.renderer.print(CONTROL, message.listening(port))
        self.listening.set()
        try:
            return await self._processor()
        finally:
            self.server.close()
            await self.server.wait_closed()
            await self.shutdown()

    async def _on_connection(self, connection):
        if not self.session.accept(connection):
            log.info("rejecting connection from %s, peer already connected", connection.remote_address)
            connection.transport.abort()
            return
        log.info("connection from %s", connection.remote_address)
        await self.events.put((ACCEPT, connection, None))
        await self._pump(connection)

    async def on_accept(self, connection, _):
        if self.console is not None:
            self.console.resume()
        self.renderer.prompt()
        self.renderer.print(CONTROL, message.client_connected())

    async def on_line(self, connection, line):
        peer = self.session.peer
        if peer is None:
            return
        try:
            await self.send_line(peer, line)
        except ConnectionClosed:
            log.debug("dropping input, peer is closed")
        self.renderer.prompt()

    async def on_disconnect(self, connection, payload):
        code, reason = payload
        self.renderer.print(CONTROL, message.disconnected(code, reason))
        self.renderer.clear()
        if self.console is not None:
            self.console.pause()
        self.session.release(connection)

    async def on_failure(self, connection, exc):
        self.renderer.print(ERROR, message.describe_error(exc))

    async def on_close(self, connection, _):
        peer = self.session.peer
        if peer is not None:
            await peer.close()
        self.renderer.clear()
        self.exit(EXIT_OK)
