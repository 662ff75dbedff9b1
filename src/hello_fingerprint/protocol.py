from typing import Callable, ClassVar, Dict, List, Optional, Tuple, Type, TypeVar, Union, cast
from dataclasses import dataclass
import logging

from .names_and_numbers import ExtensionType

logger = logging.getLogger(__name__)

T = TypeVar('T')

class FingerprintError(Exception):
    """ Base error class for errors that occur while decoding or fingerprinting a Client Hello. """
    pass

class MalformedFieldError(FingerprintError):
    """ Error for a length-prefixed Client Hello field that could not be read. """
    def __init__(self, field: str):
        super().__init__(f'Malformed Client Hello, could not read field "{field}"')
        self.field = field

class MissingDataError(FingerprintError):
    """ Error for a fingerprint that needs data the Client Hello did not provide. """
    pass

def _bytes_to_int(b: bytes) -> int:
    return int.from_bytes(b, byteorder='big')

class _Reader:
    """
    Cursor over an immutable buffer. Reads past the end raise MalformedFieldError with the given field name.
    """
    def __init__(self, data: bytes):
        self.data = data
        self.start = 0

    def empty(self) -> bool:
        return self.start >= len(self.data)

    def read_bytes(self, length: int, field: str) -> bytes:
        """ Returns the next `length` unparsed bytes. """
        if self.start + length > len(self.data):
            raise MalformedFieldError(field)
        value = self.data[self.start:self.start+length]
        self.start += length
        return value

    def read_int(self, width: int, field: str) -> int:
        return _bytes_to_int(self.read_bytes(width, field))

    def read_prefixed(self, width: int, field: str) -> bytes:
        """ Reads a `width` bytes length, then that many bytes. """
        length = self.read_int(width, field)
        return self.read_bytes(length, field)

@dataclass(frozen=True)
class SupportedGroups:
    extension_type: ClassVar[ExtensionType] = ExtensionType.supported_groups
    groups: Tuple[int, ...]

@dataclass(frozen=True)
class PointFormats:
    extension_type: ClassVar[ExtensionType] = ExtensionType.ec_point_formats
    formats: Tuple[int, ...]

@dataclass(frozen=True)
class SignatureAlgorithms:
    extension_type: ClassVar[ExtensionType] = ExtensionType.signature_algorithms
    algorithms: Tuple[int, ...]

@dataclass(frozen=True)
class ApplicationProtocols:
    extension_type: ClassVar[ExtensionType] = ExtensionType.application_layer_protocol_negotiation
    protocols: Tuple[str, ...]

@dataclass(frozen=True)
class SupportedVersions:
    extension_type: ClassVar[ExtensionType] = ExtensionType.supported_versions
    versions: Tuple[int, ...]

@dataclass(frozen=True)
class OpaqueExtension:
    """ Extension that is unknown, or whose payload could not be parsed. Only its type is fingerprinted. """
    type: int
    data: bytes

ExtensionValue = Union[SupportedGroups, PointFormats, SignatureAlgorithms, ApplicationProtocols, SupportedVersions, OpaqueExtension]

def _parse_int_list(data: bytes, prefix_width: int, item_width: int, field: str) -> Tuple[int, ...]:
    reader = _Reader(data)
    body = reader.read_prefixed(prefix_width, field)
    if not reader.empty() or len(body) % item_width:
        raise MalformedFieldError(field)
    return tuple(_bytes_to_int(body[i:i+item_width]) for i in range(0, len(body), item_width))

def _parse_supported_groups(data: bytes) -> SupportedGroups:
    return SupportedGroups(_parse_int_list(data, 2, 2, 'supported_groups'))

def _parse_point_formats(data: bytes) -> PointFormats:
    return PointFormats(_parse_int_list(data, 1, 1, 'ec_point_formats'))

def _parse_signature_algorithms(data: bytes) -> SignatureAlgorithms:
    return SignatureAlgorithms(_parse_int_list(data, 2, 2, 'signature_algorithms'))

def _parse_supported_versions(data: bytes) -> SupportedVersions:
    return SupportedVersions(_parse_int_list(data, 1, 2, 'supported_versions'))

def _parse_application_protocols(data: bytes) -> ApplicationProtocols:
    field = 'application_layer_protocol_negotiation'
    reader = _Reader(data)
    names = _Reader(reader.read_prefixed(2, field))
    if not reader.empty():
        raise MalformedFieldError(field)
    protocols: List[str] = []
    while not names.empty():
        name = names.read_prefixed(1, field)
        if not name:
            # RFC 7301 forbids empty protocol names.
            raise MalformedFieldError(field)
        protocols.append(name.decode('latin-1'))
    return ApplicationProtocols(tuple(protocols))

_EXTENSION_PARSERS: Dict[int, Callable[[bytes], ExtensionValue]] = {
    ExtensionType.supported_groups.value: _parse_supported_groups,
    ExtensionType.ec_point_formats.value: _parse_point_formats,
    ExtensionType.signature_algorithms.value: _parse_signature_algorithms,
    ExtensionType.application_layer_protocol_negotiation.value: _parse_application_protocols,
    ExtensionType.supported_versions.value: _parse_supported_versions,
}

def interpret_extension(extension_type: int, data: bytes) -> ExtensionValue:
    """
    Decodes the payload of an extension into its typed value. Unknown types, and known types with a
    malformed payload, are returned as OpaqueExtension.
    """
    parse = _EXTENSION_PARSERS.get(extension_type)
    if parse is None:
        return OpaqueExtension(extension_type, data)
    try:
        return parse(data)
    except MalformedFieldError as e:
        logger.debug(f'Treating extension {extension_type} as opaque: {e}')
        return OpaqueExtension(extension_type, data)

@dataclass(frozen=True)
class Extension:
    type: int
    data: bytes

    @property
    def name(self) -> str:
        try:
            return ExtensionType(self.type).name
        except ValueError:
            return f'unknown_{self.type}'

    def interpret(self) -> ExtensionValue:
        return interpret_extension(self.type, self.data)

@dataclass(frozen=True)
class ClientHello:
    content_type: int
    message_version: int
    handshake_type: int
    handshake_version: int
    random_time: int
    random_bytes: bytes
    session_id: bytes
    cipher_suites: Tuple[int, ...]
    compression_methods: bytes
    # Wire order, duplicates included.
    extensions: Tuple[Extension, ...]

    def extension_types(self) -> List[int]:
        return [extension.type for extension in self.extensions]

    def _first_decoded(self, variant: Type[T]) -> Optional[T]:
        """
        Returns the decoded value of the first well-formed extension of the variant's type, if any.
        """
        extension_type = variant.extension_type
        parse = _EXTENSION_PARSERS[extension_type.value]
        for extension in self.extensions:
            if extension.type != extension_type.value:
                continue
            try:
                return cast(T, parse(extension.data))
            except MalformedFieldError as e:
                logger.debug(f'Skipping malformed {extension_type.name} extension: {e}')
        return None

    def curves(self) -> List[int]:
        value = self._first_decoded(SupportedGroups)
        return list(value.groups) if value else []

    def points(self) -> List[int]:
        value = self._first_decoded(PointFormats)
        return list(value.formats) if value else []

    def algorithms(self) -> List[int]:
        value = self._first_decoded(SignatureAlgorithms)
        return list(value.algorithms) if value else []

    def protocols(self) -> List[str]:
        value = self._first_decoded(ApplicationProtocols)
        return list(value.protocols) if value else []

    def versions(self) -> List[int]:
        value = self._first_decoded(SupportedVersions)
        return list(value.versions) if value else []

def parse_client_hello(data: bytes, strict: bool = False) -> ClientHello:
    """
    Parses a TLS record containing a Client Hello handshake message.

    Raises MalformedFieldError naming the first field that could not be read. By default a truncated
    trailing cipher suite is skipped and a malformed extension entry ends the extension list; with
    `strict=True` both raise instead.
    """
    reader = _Reader(bytes(data))
    content_type = reader.read_int(1, 'content-type')
    message_version = reader.read_int(2, 'version')

    record = _Reader(reader.read_prefixed(2, 'handshake-header'))
    handshake_type = record.read_int(1, 'handshake-type')

    body = _Reader(record.read_prefixed(3, 'handshake-body'))
    handshake_version = body.read_int(2, 'client-version')
    # The classic 32 byte random, split in a timestamp and 28 random bytes.
    random_time = body.read_int(4, 'random-time')
    random_bytes = body.read_bytes(28, 'random-bytes')
    session_id = body.read_prefixed(1, 'session-id')

    cipher_suites_data = body.read_prefixed(2, 'cipher-suites')
    if len(cipher_suites_data) % 2:
        if strict:
            raise MalformedFieldError('cipher-suites')
        logger.debug(f'Ignoring trailing byte in cipher suites list of length {len(cipher_suites_data)}')
    cipher_suites = tuple(_bytes_to_int(cipher_suites_data[i:i+2]) for i in range(0, len(cipher_suites_data) - 1, 2))

    compression_methods = body.read_prefixed(1, 'compression-methods')

    extensions_reader = _Reader(body.read_prefixed(2, 'extensions-block'))
    extensions: List[Extension] = []
    while not extensions_reader.empty():
        try:
            extension_type = extensions_reader.read_int(2, 'extensions-block')
            extension_data = extensions_reader.read_prefixed(2, 'extensions-block')
        except MalformedFieldError:
            if strict:
                raise
            logger.debug(f'Stopping at malformed extension entry after {len(extensions)} extensions')
            break
        extensions.append(Extension(extension_type, extension_data))

    return ClientHello(
        content_type=content_type,
        message_version=message_version,
        handshake_type=handshake_type,
        handshake_version=handshake_version,
        random_time=random_time,
        random_bytes=random_bytes,
        session_id=session_id,
        cipher_suites=cipher_suites,
        compression_methods=compression_methods,
        extensions=tuple(extensions),
    )
