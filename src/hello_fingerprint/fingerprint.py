from typing import Any, Iterable, List, Optional, Tuple
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import dataclasses
import hashlib
import ipaddress
import logging

from .names_and_numbers import GREASE_VALUES, Protocol
from .protocol import ClientHello, MissingDataError, parse_client_hello

logger = logging.getLogger(__name__)

# Counts in the first JA4 segment are two digits wide.
MAX_JA4_COUNT: int = 99

def is_grease(value: int) -> bool:
    return value in GREASE_VALUES

def remove_grease(values: Iterable[int]) -> List[int]:
    """
    Returns the values that are not RFC 8701 GREASE sentinels, in their original order.
    """
    return [value for value in values if not is_grease(value)]

def _join(values: Iterable[Any], separator: str) -> str:
    return separator.join(str(value) for value in values)

def _truncated_sha256(text: str) -> str:
    return hashlib.sha256(text.encode('ascii')).hexdigest()[:12]

def md5_hex(text: str) -> str:
    """ Hashed form of a JA3/JA3N string, as published by most JA3 databases. """
    return hashlib.md5(text.encode('ascii')).hexdigest()

@dataclass(frozen=True)
class ConnectionState:
    """
    What the TLS stack negotiated for a connection. Not derivable from the Client Hello alone.
    """
    # Wire code of the negotiated version, e.g. 0x0304 for TLS 1.3.
    version: int
    server_name: Optional[str] = None
    negotiated_protocol: str = ''

    def version_code(self) -> str:
        try:
            return Protocol(self.version).ja4_code
        except ValueError:
            return '00'

    def server_name_code(self) -> str:
        """ 'd' for a domain name, 'i' for a missing SNI or a literal IP address. """
        if not self.server_name:
            return 'i'
        host = self.server_name
        if host.startswith('[') and host.endswith(']'):
            host = host[1:-1]
        try:
            ipaddress.ip_address(host)
        except ValueError:
            return 'd'
        return 'i'

    def protocol_code(self) -> str:
        protocol = self.negotiated_protocol
        if not protocol:
            return '00'
        elif len(protocol) == 1:
            return protocol + '0'
        elif len(protocol) == 2:
            return protocol
        elif protocol == 'http/1.1':
            return 'h1'
        return protocol[:2]

@dataclass(frozen=True)
class TlsFields:
    """
    Flat view of the Client Hello fields used by the JA3 and JA4 fingerprints. Lists are in wire
    order and still contain GREASE values.
    """
    ciphers: Tuple[int, ...]
    curves: Tuple[int, ...]
    extensions: Tuple[int, ...]
    points: Tuple[int, ...]
    protocols: Tuple[str, ...]
    versions: Tuple[int, ...]
    algorithms: Tuple[int, ...]
    random_time: str
    random_bytes: str
    session_id: str
    compression_methods: str

    @classmethod
    def from_client_hello(cls, client_hello: ClientHello) -> 'TlsFields':
        return cls(
            ciphers=tuple(client_hello.cipher_suites),
            curves=tuple(client_hello.curves()),
            extensions=tuple(client_hello.extension_types()),
            points=tuple(client_hello.points()),
            protocols=tuple(client_hello.protocols()),
            versions=tuple(client_hello.versions()),
            algorithms=tuple(client_hello.algorithms()),
            random_time=datetime.fromtimestamp(client_hello.random_time, tz=timezone.utc).isoformat(' '),
            random_bytes=client_hello.random_bytes.hex(),
            session_id=client_hello.session_id.hex(),
            compression_methods=client_hello.compression_methods.hex(),
        )

    def ja3(self) -> Tuple[str, str]:
        """
        Returns the JA3 and JA3N strings, before hashing:

            TLSVersion,Ciphers,Extensions,EllipticCurves,EllipticCurvePointFormats

        JA3N leaves the extensions field empty. The version is the first supported_versions entry,
        so Client Hellos without that extension raise MissingDataError.
        """
        versions = remove_grease(self.versions)
        if not versions:
            raise MissingDataError('JA3 requires a supported_versions extension with a non-GREASE version')
        tls_version = str(versions[0])
        ciphers = _join(remove_grease(self.ciphers), '-')
        curves = _join(remove_grease(self.curves), '-')
        points = _join(remove_grease(self.points), '-')
        ja3 = ','.join([tls_version, ciphers, _join(remove_grease(self.extensions), '-'), curves, points])
        ja3n = ','.join([tls_version, ciphers, '', curves, points])
        return ja3, ja3n

    def ja4(self, connection_state: ConnectionState) -> str:
        """
        Returns the JA4 fingerprint, three segments joined by underscores:

        - `t`, negotiated version, SNI kind, cipher count, extension count and negotiated ALPN code;
        - truncated SHA256 of the numerically sorted ciphers;
        - truncated SHA256 of the sorted extension types followed by the signature algorithms in wire order.
        """
        ciphers = remove_grease(self.ciphers)
        extensions = remove_grease(self.extensions)
        ja4_a = ''.join([
            't',
            connection_state.version_code(),
            connection_state.server_name_code(),
            f'{min(len(ciphers), MAX_JA4_COUNT):02d}',
            f'{min(len(extensions), MAX_JA4_COUNT):02d}',
            connection_state.protocol_code(),
        ])
        ja4_b = _truncated_sha256(_join(sorted(ciphers), ''))
        ja4_c = _truncated_sha256(_join(sorted(extensions), '') + _join(self.algorithms, ''))
        return '_'.join([ja4_a, ja4_b, ja4_c])

@dataclass(frozen=True)
class FingerprintRecord:
    """
    Fingerprint data of a single connection: the raw Client Hello record as captured by the TLS
    stack, and what the handshake negotiated. Created once after the handshake, and passed to
    whatever needs it. Every accessor decodes the raw bytes again.
    """
    client_hello_data: bytes
    connection_state: ConnectionState

    def client_hello(self, strict: bool = False) -> ClientHello:
        return parse_client_hello(self.client_hello_data, strict=strict)

    def fields(self) -> TlsFields:
        return TlsFields.from_client_hello(self.client_hello())

    def ja3(self) -> Tuple[str, str]:
        return self.fields().ja3()

    def ja4(self) -> str:
        return self.fields().ja4(self.connection_state)

    def summary(self) -> dict:
        """
        All fingerprints of this connection, plus the fields they were computed from.
        JA3 values are None when the Client Hello has no supported_versions extension.
        """
        return fingerprint_summary(self.fields(), self.connection_state)

def fingerprint_summary(fields: TlsFields, connection_state: ConnectionState) -> dict:
    ja3: Optional[str]
    ja3n: Optional[str]
    try:
        ja3, ja3n = fields.ja3()
    except MissingDataError as e:
        logger.info(f'No JA3 fingerprint: {e}')
        ja3 = ja3n = None
    return {
        'ja3': ja3,
        'ja3_hash': md5_hex(ja3) if ja3 is not None else None,
        'ja3n': ja3n,
        'ja3n_hash': md5_hex(ja3n) if ja3n is not None else None,
        'ja4': fields.ja4(connection_state),
        'connection': connection_state,
        'fields': fields,
    }

def to_json_obj(o: Any) -> Any:
    """
    Converts an object to a JSON-serializable structure, replacing dataclasses, enums, bytes, datetimes, etc.
    """
    if isinstance(o, dict):
        return {to_json_obj(key): to_json_obj(value) for key, value in o.items()}
    elif dataclasses.is_dataclass(o) and not isinstance(o, type):
        return to_json_obj(dataclasses.asdict(o))
    elif isinstance(o, (set, frozenset)):
        return sorted(to_json_obj(item) for item in o)
    elif isinstance(o, (tuple, list)):
        return [to_json_obj(item) for item in o]
    elif isinstance(o, Enum):
        return o.name
    elif isinstance(o, (bytes, bytearray)):
        return o.hex()
    elif isinstance(o, datetime):
        return o.isoformat(' ')
    return o
