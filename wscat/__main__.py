import sys
import asyncio
import logging
import argparse
import signal

from wscat import __version__
from wscat.common import UsageError
from wscat.console import Renderer, LineSource, ask_passphrase
from wscat.net import ClientBridge, ServerBridge
from wscat.session import Session, LISTEN, ASK, DEFAULT_WAIT

EXIT_USAGE = 2

log = logging.getLogger("wscat.main")


def build_parser():
    parser = argparse.ArgumentParser(prog="wscat", description="interactive websocket client and server")
    parser.add_argument("--version", action="version", version="%(prog)s " + __version__)

    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("-l", "--listen", help="listen on port", type=int, metavar="PORT")
    mode.add_argument("-c", "--connect", help="connect to a websocket server", metavar="URL")

    parser.add_argument("-p", "--protocol", help="protocol version", type=int, metavar="VERSION")
    parser.add_argument("-o", "--origin", help="origin header")
    parser.add_argument("-x", "--execute", help="send command on connect, then disconnect", metavar="COMMAND")
    parser.add_argument("-w", "--wait", help="seconds to wait before disconnecting after --execute",
                        type=float, default=DEFAULT_WAIT, metavar="SECONDS")
    parser.add_argument("--host", help="connect to this host instead of the one in the url")
    parser.add_argument("-s", "--subprotocol", help="websocket subprotocol", metavar="PROTOCOL")
    parser.add_argument("-n", "--no-check", help="do not check for unauthorized certificates",
                        dest="check", action="store_false")
    parser.add_argument("-H", "--header", help="set a request header, repeatable", action="append",
                        default=[], metavar="KEY:VALUE")
    parser.add_argument("--auth", help="add basic http authentication header", metavar="USER:PASSWORD")
    parser.add_argument("--ca", help="certificate authority file")
    parser.add_argument("--cert", help="client certificate file")
    parser.add_argument("--key", help="client key file")
    parser.add_argument("--passphrase", help="client key passphrase, prompted for when no value is given",
                        nargs="?", const=ASK)
    parser.add_argument("--slash", help="enable slash commands (/ping, /pong, /close)", action="store_true")
    parser.add_argument("--no-color", help="run without color", dest="color", action="store_false")
    parser.add_argument("--verbose", help="verbose mode", action="store_true")
    return parser


async def main(session):
    renderer = Renderer(color=session.color, decorate=not session.is_execute)

    if session.mode == LISTEN:
        bridge = ServerBridge(session, renderer)
    else:
        if session.needs_passphrase:
            session.passphrase = await ask_passphrase()
        bridge = ClientBridge(session, renderer)

    bridge.console = LineSource(bridge.events)

    for sig in (signal.SIGHUP, signal.SIGINT, signal.SIGTERM):
        asyncio.get_running_loop().add_signal_handler(sig, bridge.console.close)

    return await bridge.run()


def run(argv=None):
    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='[%(asctime)s] %(name)s - %(levelname)s - %(message)s',
    )

    try:
        session = Session.from_args(args)
        log.debug("starting %s", session)
        code = asyncio.run(main(session), debug=args.verbose)
    except UsageError as e:
        print("error: {}".format(e), file=sys.stderr)
        code = EXIT_USAGE
    except (KeyboardInterrupt, EOFError):
        # interrupted at the passphrase prompt
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    run()
