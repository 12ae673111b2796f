import ssl
import base64
from unittest import mock

import pytest

from wscat.common import UsageError
from wscat.session import Session, LISTEN, CONNECT, ASK, DEFAULT_WAIT
from wscat.session import normalize_url, parse_headers, build_headers, basic_auth, build_ssl_context
from wscat.__main__ import build_parser


def parse(*argv):
    return Session.from_args(build_parser().parse_args(list(argv)))


def test_normalize_url():
    assert normalize_url("example.com/chat") == "ws://example.com/chat"
    assert normalize_url("localhost:8080") == "ws://localhost:8080"
    assert normalize_url("wss://example.com/chat") == "wss://example.com/chat"
    assert normalize_url("ws://example.com") == "ws://example.com"


def test_parse_headers():
    assert parse_headers(["X-Foo:a:b", "X-Bar:baz"]) == {"X-Foo": "a:b", "X-Bar": "baz"}
    assert parse_headers(["X-Empty:"]) == {"X-Empty": ""}
    assert parse_headers([]) == {}
    assert parse_headers(None) == {}


def test_parse_headers_invalid():
    with pytest.raises(UsageError):
        parse_headers(["no-colon"])

    with pytest.raises(UsageError):
        parse_headers([":value"])


def test_auth_header_wins():
    headers = build_headers(["Authorization:custom", "X-Foo:bar"], "user:pass")
    assert headers["Authorization"] == "Basic " + base64.b64encode(b"user:pass").decode()
    assert headers["X-Foo"] == "bar"

    assert build_headers(["Authorization:custom"]) == {"Authorization": "custom"}


def test_basic_auth():
    assert basic_auth("user:pa:ss") == "Basic dXNlcjpwYTpzcw=="


def test_from_args_connect():
    session = parse("-c", "example.com/chat", "-H", "X-Foo:a:b", "--auth", "user:pass",
                    "-o", "http://example.com", "-s", "chat", "--host", "10.0.0.1",
                    "-x", "ping", "-w", "0.5", "--no-color", "--slash")

    assert session.mode == CONNECT
    assert session.url == "ws://example.com/chat"
    assert session.headers == {"X-Foo": "a:b", "Authorization": basic_auth("user:pass")}
    assert session.is_execute
    assert session.execute == "ping"
    assert session.wait == 0.5
    assert not session.color
    assert session.check
    assert session.slash
    assert str(session) == "<Session(connect ws://example.com/chat)>"

    kwargs = session.connect_kwargs()
    assert kwargs == {
        "origin": "http://example.com",
        "subprotocols": ["chat"],
        "additional_headers": {"X-Foo": "a:b", "Authorization": basic_auth("user:pass")},
        "host": "10.0.0.1",
    }


def test_from_args_listen():
    session = parse("-l", "8080")
    assert session.mode == LISTEN
    assert session.port == 8080
    assert session.url is None
    assert not session.is_execute
    assert session.wait == DEFAULT_WAIT
    assert session.color
    assert session.peer is None


def test_mode_required():
    parser = build_parser()
    with pytest.raises(SystemExit) as e:
        parser.parse_args([])
    assert e.value.code == 2

    with pytest.raises(SystemExit) as e:
        parser.parse_args(["-l", "8080", "-c", "localhost"])
    assert e.value.code == 2


def test_passphrase_flag():
    assert parse("-c", "wss://localhost", "--passphrase").needs_passphrase
    assert parse("-c", "wss://localhost", "--passphrase").passphrase is ASK
    session = parse("-c", "wss://localhost", "--passphrase", "secret")
    assert not session.needs_passphrase
    assert session.passphrase == "secret"
    assert parse("-c", "wss://localhost").passphrase is None


def test_protocol_version():
    assert parse("-c", "localhost", "-p", "13").protocol == 13
    with pytest.raises(UsageError):
        parse("-c", "localhost", "-p", "8")


def test_ssl_only_for_secure_urls():
    assert "ssl" not in parse("-c", "localhost", "-n").connect_kwargs()

    kwargs = parse("-c", "wss://localhost", "-n").connect_kwargs()
    context = kwargs["ssl"]
    assert isinstance(context, ssl.SSLContext)
    assert not context.check_hostname
    assert context.verify_mode == ssl.CERT_NONE

    context = parse("-c", "wss://localhost").connect_kwargs()["ssl"]
    assert context.check_hostname
    assert context.verify_mode == ssl.CERT_REQUIRED


def test_missing_certificate_material(tmp_path):
    with pytest.raises(UsageError):
        parse("-c", "wss://localhost", "--ca", str(tmp_path / "missing.pem")).connect_kwargs()

    with pytest.raises(UsageError):
        parse("-c", "wss://localhost", "--cert", str(tmp_path / "missing.pem")).connect_kwargs()


def test_invalid_certificate_authority(tmp_path):
    ca = tmp_path / "ca.pem"
    ca.write_text("not a certificate")
    with pytest.raises(UsageError):
        parse("-c", "wss://localhost", "--ca", str(ca)).connect_kwargs()


def test_single_peer():
    session = Session(LISTEN, port=8080)
    first, second = object(), object()

    assert session.accept(first)
    assert not session.accept(second)
    assert session.peer is first

    session.release(second)
    assert session.peer is first

    session.release(first)
    assert session.peer is None
    assert session.accept(second)
    assert session.peer is second


def test_ca_replaces_system_roots(tmp_path):
    ca = tmp_path / "ca.pem"
    ca.write_text("-----BEGIN CERTIFICATE-----\nAAAA\n-----END CERTIFICATE-----\n")

    with mock.patch.object(ssl.SSLContext, "load_verify_locations") as load_patch, \
            mock.patch.object(ssl.SSLContext, "load_default_certs") as default_patch:
        context = build_ssl_context(ca=str(ca))

    load_patch.assert_called_once_with(cadata=ca.read_text())
    default_patch.assert_not_called()
    assert context.check_hostname
    assert context.verify_mode == ssl.CERT_REQUIRED


def test_system_roots_without_ca():
    with mock.patch.object(ssl.SSLContext, "load_default_certs") as default_patch:
        build_ssl_context()
    assert default_patch.called


def test_execute_requires_connect():
    with pytest.raises(UsageError):
        parse("-l", "8080", "-x", "ping")

    with pytest.raises(UsageError):
        Session(LISTEN, port=8080, execute="ping")
