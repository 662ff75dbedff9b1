from contextlib import contextmanager
from typing import Iterator, List, Sequence, Tuple
import pytest

def u8_list(values: Sequence[int]) -> bytes:
    return bytes([len(values)]) + bytes(values)

def u16_list(values: Sequence[int], prefix_width: int = 2) -> bytes:
    body = b''.join(value.to_bytes(2, 'big') for value in values)
    return len(body).to_bytes(prefix_width, 'big') + body

def alpn_list(names: Sequence[str]) -> bytes:
    body = b''.join(bytes([len(name)]) + name.encode('ascii') for name in names)
    return len(body).to_bytes(2, 'big') + body

def build_client_hello(
    cipher_suites: Sequence[int] = (0x0A0A, 0x1301, 0x1302),
    extensions: Sequence[Tuple[int, bytes]] = (),
    session_id: bytes = 32*b'\x07',
    compression_methods: bytes = b'\x00',
    random_time: int = 0x65920080,
    random_bytes: bytes = bytes(range(28)),
    client_version: int = 0x0303,
    record_version: int = 0x0301,
    raw_cipher_suites: bytes = b'',
    raw_extensions: bytes = b'',
    ) -> bytes:
    """
    Builds a TLS record with a Client Hello. `raw_*` bytes are appended as-is to their blocks.
    """
    octets: List[int] = []

    @contextmanager
    def prefix_length(width_bytes: int = 2) -> Iterator[None]:
        """ Inserts `width_bytes` bytes of zeros, and on exit fills it with the observed length. """
        start_index = len(octets)
        octets.extend(width_bytes*[0])
        yield None
        length = len(octets) - start_index - width_bytes
        octets[start_index:start_index+width_bytes] = length.to_bytes(width_bytes, byteorder="big")

    octets.append(0x16)
    octets.extend(record_version.to_bytes(2, 'big'))
    with prefix_length():
        octets.append(0x01)
        with prefix_length(width_bytes=3):
            octets.extend(client_version.to_bytes(2, 'big'))
            octets.extend(random_time.to_bytes(4, 'big'))
            octets.extend(random_bytes)
            with prefix_length(width_bytes=1):
                octets.extend(session_id)
            with prefix_length():
                for cipher_suite in cipher_suites:
                    octets.extend(cipher_suite.to_bytes(2, 'big'))
                octets.extend(raw_cipher_suites)
            with prefix_length(width_bytes=1):
                octets.extend(compression_methods)
            with prefix_length():
                for extension_type, data in extensions:
                    octets.extend(extension_type.to_bytes(2, 'big'))
                    with prefix_length():
                        octets.extend(data)
                octets.extend(raw_extensions)
    return bytes(octets)

# Chrome-like extension list: GREASE, server_name, supported_groups, ec_point_formats,
# signature_algorithms, ALPN, supported_versions.
BROWSER_EXTENSIONS: Tuple[Tuple[int, bytes], ...] = (
    (0x1A1A, b''),
    (0, b'\x00\x0e\x00\x00\x0bexample.com'),
    (10, u16_list([0x2A2A, 29, 23])),
    (11, u8_list([0])),
    (13, u16_list([0x0403, 0x0804])),
    (16, alpn_list(['h2', 'http/1.1'])),
    (43, u16_list([0x3A3A, 0x0304, 0x0303], prefix_width=1)),
)

@pytest.fixture
def browser_hello() -> bytes:
    return build_client_hello(extensions=BROWSER_EXTENSIONS)
