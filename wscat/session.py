import ssl
import base64
import logging
from urllib.parse import urlsplit

from wscat.common import UsageError

LISTEN = "listen"
CONNECT = "connect"

DEFAULT_SCHEME = "ws://"
DEFAULT_WAIT = 2
PROTOCOL_VERSION = 13

# passphrase flag given without a value
ASK = object()

log = logging.getLogger(__name__)


def normalize_url(url):
    if "://" in url:
        return url
    return DEFAULT_SCHEME + url


def parse_header(s):
    if ":" not in s:
        raise UsageError("invalid header {!r}, expected key:value".format(s))
    key, value = s.split(":", 1)
    key = key.strip()
    if not key:
        raise UsageError("invalid header {!r}, empty key".format(s))
    return key, value


def parse_headers(values):
    headers = {}
    for value in values or []:
        key, value = parse_header(value)
        headers[key] = value
    return headers


def basic_auth(credentials):
    return "Basic " + base64.b64encode(credentials.encode()).decode()


def build_headers(header_args, auth=None):
    headers = parse_headers(header_args)
    if auth is not None:
        # set after the custom headers so it always wins
        headers["Authorization"] = basic_auth(auth)
    return headers


def read_material(path):
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise UsageError("cannot read {}: {}".format(path, e.strerror or e))


def build_ssl_context(ca=None, cert=None, key=None, passphrase=None, check=True):
    if ca:
        # trust only the given authority, not the system roots
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        data = read_material(ca)
        try:
            # PEM goes in as text, DER as bytes
            cadata = data.decode("ascii")
        except UnicodeDecodeError:
            cadata = data
        try:
            context.load_verify_locations(cadata=cadata)
        except ssl.SSLError as e:
            raise UsageError("cannot load certificate authority {}: {}".format(ca, e.reason or e))
    else:
        context = ssl.create_default_context()
    if cert:
        log.debug("loading client certificate %s (key %s)", cert, key)
        try:
            context.load_cert_chain(cert, keyfile=key, password=passphrase)
        except ssl.SSLError as e:
            raise UsageError("cannot load certificate {}: {}".format(cert, e.reason or e))
        except OSError as e:
            raise UsageError("cannot read {}: {}".format(e.filename or cert, e.strerror or e))
    if not check:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class Session:
    """
    One run of the tool: the configuration plus the single peer slot.
    """

    def __init__(self, mode, port=None, url=None, protocol=None, origin=None,
                 subprotocol=None, host=None, headers=None, execute=None,
                 wait=DEFAULT_WAIT, color=True, check=True, slash=False,
                 ca=None, cert=None, key=None, passphrase=None):
        self.mode = mode
        self.port = port
        self.url = normalize_url(url) if url else None
        self.protocol = protocol
        self.origin = origin
        self.subprotocol = subprotocol
        self.host = host
        self.headers = headers or {}
        self.execute = execute
        self.wait = DEFAULT_WAIT if wait is None else wait
        self.color = color
        self.check = check
        self.slash = slash
        self.ca = ca
        self.cert = cert
        self.key = key
        self.passphrase = passphrase

        self.peer = None

        if self.mode == LISTEN and self.execute is not None:
            raise UsageError("--execute is only available with --connect")

        if self.protocol is not None and self.protocol != PROTOCOL_VERSION:
            raise UsageError("unsupported protocol version {}, only {} is available".format(
                self.protocol, PROTOCOL_VERSION))

    def __str__(self):
        target = self.url if self.mode == CONNECT else "port {}".format(self.port)
        return "<Session({} {})>".format(self.mode, target)

    @classmethod
    def from_args(cls, args):
        mode = LISTEN if args.listen is not None else CONNECT
        return cls(
            mode,
            port=args.listen,
            url=args.connect,
            protocol=args.protocol,
            origin=args.origin,
            subprotocol=args.subprotocol,
            host=args.host,
            headers=build_headers(args.header, args.auth),
            execute=args.execute,
            wait=args.wait,
            color=args.color,
            check=args.check,
            slash=args.slash,
            ca=args.ca,
            cert=args.cert,
            key=args.key,
            passphrase=args.passphrase,
        )

    @property
    def is_execute(self):
        return self.execute is not None

    @property
    def needs_passphrase(self):
        return self.passphrase is ASK

    @property
    def secure(self):
        return bool(self.url) and urlsplit(self.url).scheme == "wss"

    def ssl_context(self):
        if not self.secure:
            return None
        passphrase = None if self.passphrase is ASK else self.passphrase
        return build_ssl_context(self.ca, self.cert, self.key, passphrase, self.check)

    def connect_kwargs(self):
        kwargs = {}
        if self.origin:
            kwargs["origin"] = self.origin
        if self.subprotocol:
            kwargs["subprotocols"] = [self.subprotocol]
        if self.headers:
            kwargs["additional_headers"] = dict(self.headers)
        if self.host:
            kwargs["host"] = self.host
        context = self.ssl_context()
        if context is not None:
            kwargs["ssl"] = context
        return kwargs

    def accept(self, connection):
        """Stores connection as the peer unless one is held already."""
        if self.peer is not None:
            return False
        self.peer = connection
        return True

    def release(self, connection):
        if self.peer is connection:
            self.peer = None
