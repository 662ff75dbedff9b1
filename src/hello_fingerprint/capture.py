from multiprocessing.pool import ThreadPool
from typing import Callable, Optional, Sequence, Tuple
import json
import logging
import select
import socket
import threading
import time

from OpenSSL import SSL

from .fingerprint import ConnectionState, FingerprintRecord, to_json_obj
from .names_and_numbers import RecordType
from .protocol import FingerprintError

logger = logging.getLogger(__name__)

# Default time allowed for a client to send its Client Hello and finish the handshake, in seconds.
DEFAULT_TIMEOUT: float = 5
# Default number of connections handled at the same time.
DEFAULT_MAX_WORKERS: int = 6
# Accepted connections waiting for a worker, per worker, before the server stops accepting.
PENDING_CONNECTIONS_PER_WORKER: int = 4
# ALPN protocols the server accepts, in order of preference.
DEFAULT_ALPN_PROTOCOLS: Tuple[str, ...] = ('h2', 'http/1.1')
# Pause between peeks while only part of the record has arrived, in seconds.
PEEK_INTERVAL: float = 0.01

RECORD_HEADER_LENGTH: int = 5

class CaptureError(FingerprintError):
    """ Error for connections whose Client Hello or handshake could not be captured. """
    pass

def _remaining(deadline: float, what: str) -> float:
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise CaptureError(f'Timed out waiting for {what}')
    return remaining

def _peek_exactly(sock: socket.socket, length: int, deadline: float) -> bytes:
    # MSG_PEEK leaves the bytes in the socket buffer for the TLS library to read later.
    # A socket with a timeout is non-blocking underneath, so MSG_WAITALL cannot be relied on.
    what = f'{length} bytes of Client Hello'
    while True:
        rd, _, _ = select.select([sock], [], [], _remaining(deadline, what))
        if not rd:
            raise CaptureError(f'Timed out waiting for {what}')
        try:
            data = sock.recv(length, socket.MSG_PEEK)
        except OSError as e:
            raise CaptureError('Could not read Client Hello from socket') from e
        if len(data) >= length:
            return data
        if not data:
            raise CaptureError(f'Client closed the connection, expected {length} bytes')
        # The socket stays readable while any byte is buffered, so select cannot wait for the rest.
        time.sleep(min(PEEK_INTERVAL, _remaining(deadline, what)))

def peek_client_hello(sock: socket.socket, deadline: Optional[float] = None) -> bytes:
    """
    Returns the first TLS record sent by the client, without consuming it, so the handshake can
    still be completed on the same socket. `deadline` is a `time.monotonic()` value and defaults
    to DEFAULT_TIMEOUT seconds from now.
    """
    if deadline is None:
        deadline = time.monotonic() + DEFAULT_TIMEOUT
    header = _peek_exactly(sock, RECORD_HEADER_LENGTH, deadline)
    if header[0] != RecordType.HANDSHAKE.value:
        raise CaptureError(f'Client sent record type {header[0]:#04x}, expected a handshake record')
    record_length = int.from_bytes(header[3:5], byteorder='big')
    return _peek_exactly(sock, RECORD_HEADER_LENGTH + record_length, deadline)

def connection_state_from_openssl(connection: SSL.Connection) -> ConnectionState:
    """
    Extracts the negotiated version, SNI and ALPN protocol of a completed pyOpenSSL handshake.
    """
    server_name = connection.get_servername()
    negotiated_protocol = connection.get_alpn_proto_negotiated()
    return ConnectionState(
        version=connection.get_protocol_version(),
        server_name=server_name.decode('utf-8', errors='replace') if server_name else None,
        negotiated_protocol=negotiated_protocol.decode('latin-1') if negotiated_protocol else '',
    )

def make_alpn_selector(alpn_protocols: Sequence[str]) -> Callable[[SSL.Connection, Sequence[bytes]], bytes]:
    """
    ALPN select callback for pyOpenSSL, preferring the server order of `alpn_protocols`.
    """
    preferred = [protocol.encode('latin-1') for protocol in alpn_protocols]

    def select_protocol(connection: SSL.Connection, offered: Sequence[bytes]) -> bytes:
        for protocol in preferred:
            if protocol in offered:
                return protocol
        return SSL.NO_OVERLAPPING_PROTOCOLS
    return select_protocol

def make_server_context(cert_file: str, key_file: str, alpn_protocols: Sequence[str] = DEFAULT_ALPN_PROTOCOLS) -> SSL.Context:
    """
    Creates a pyOpenSSL server context that picks the first of `alpn_protocols` offered by the client.
    """
    try:
        context = SSL.Context(SSL.TLS_SERVER_METHOD)
        context.use_certificate_chain_file(cert_file)
        context.use_privatekey_file(key_file)
    except SSL.Error as e:
        raise CaptureError(f'Could not load certificate {cert_file} and key {key_file}: {e}') from e
    context.set_alpn_select_callback(make_alpn_selector(alpn_protocols))
    return context

def accept_fingerprint(sock: socket.socket, context: SSL.Context, timeout_in_seconds: float = DEFAULT_TIMEOUT) -> Tuple[FingerprintRecord, SSL.Connection]:
    """
    Captures the Client Hello of an accepted socket and completes the server side of the handshake.
    Returns the fingerprint record and the established pyOpenSSL connection.

    The whole exchange, from the first byte to the end of the handshake, must finish within
    `timeout_in_seconds`.
    """
    deadline = time.monotonic() + timeout_in_seconds
    client_hello_data = peek_client_hello(sock, deadline)
    connection = SSL.Connection(context, sock)
    connection.set_accept_state()
    while True:
        try:
            connection.do_handshake()
            break
        except SSL.WantReadError as e:
            rd, _, _ = select.select([sock], [], [], _remaining(deadline, 'handshake'))
            if not rd:
                raise CaptureError('Timed out waiting for handshake') from e
            continue
        except (SSL.Error, SSL.SysCallError) as e:
            raise CaptureError(f'OpenSSL exception during handshake: {e}') from e

    connection_state = connection_state_from_openssl(connection)
    logger.debug(f'Handshake completed: {connection_state}')
    return FingerprintRecord(client_hello_data, connection_state), connection

def make_http_response(record: FingerprintRecord) -> bytes:
    """
    HTTP/1.1 response whose JSON body lists the fingerprints of the connection.
    """
    body = json.dumps(to_json_obj(record.summary()), indent=2).encode('utf-8')
    headers = (
        'HTTP/1.1 200 OK\r\n'
        'Content-Type: application/json\r\n'
        f'Content-Length: {len(body)}\r\n'
        'Connection: close\r\n'
        '\r\n'
    )
    return headers.encode('ascii') + body

def handle_connection(sock: socket.socket, address: Tuple[str, int], context: SSL.Context, on_record: Callable[[FingerprintRecord], None] = lambda r: None, timeout_in_seconds: float = DEFAULT_TIMEOUT) -> None:
    """
    Answers a single client with its own fingerprints. Errors are logged, not raised, so one bad
    client does not stop the server.
    """
    with sock:
        try:
            record, connection = accept_fingerprint(sock, context, timeout_in_seconds)
            on_record(record)
            connection.sendall(make_http_response(record))
            connection.shutdown()
        except (FingerprintError, SSL.Error, OSError) as e:
            logger.warning(f'Could not fingerprint {address[0]}:{address[1]}: {e}')
        except Exception:
            # Pool workers drop exceptions, so anything unexpected is logged here.
            logger.exception(f'Unexpected error while fingerprinting {address[0]}:{address[1]}')

def serve(host: str, port: int, context: SSL.Context, timeout_in_seconds: float = DEFAULT_TIMEOUT, max_workers: int = DEFAULT_MAX_WORKERS, on_record: Callable[[FingerprintRecord], None] = lambda r: None) -> None:
    """
    Accepts TLS connections forever, replying to each with its fingerprints.
    Connections are handled in parallel by up to `max_workers` threads. When too many accepted
    connections are waiting for a worker, new ones wait in the listen backlog instead.
    """
    pending = threading.BoundedSemaphore(max_workers * PENDING_CONNECTIONS_PER_WORKER)

    def handle(sock: socket.socket, address: Tuple[str, int]) -> None:
        try:
            handle_connection(sock, address, context, on_record, timeout_in_seconds)
        finally:
            pending.release()

    with socket.create_server((host, port)) as server_socket, ThreadPool(max_workers) as pool:
        logger.info(f'Listening on {host}:{port}')
        while True:
            pending.acquire()
            sock, address = server_socket.accept()
            sock.settimeout(timeout_in_seconds)
            logger.debug(f'Accepted connection from {address[0]}:{address[1]}')
            pool.apply_async(handle, (sock, address))
