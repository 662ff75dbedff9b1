from .names_and_numbers import Protocol, RecordType, HandshakeType, ExtensionType, GREASE_VALUES
from .protocol import (
    FingerprintError,
    MalformedFieldError,
    MissingDataError,
    ClientHello,
    Extension,
    SupportedGroups,
    PointFormats,
    SignatureAlgorithms,
    ApplicationProtocols,
    SupportedVersions,
    OpaqueExtension,
    ExtensionValue,
    interpret_extension,
    parse_client_hello,
)
from .fingerprint import (
    ConnectionState,
    TlsFields,
    FingerprintRecord,
    fingerprint_summary,
    is_grease,
    remove_grease,
    md5_hex,
    to_json_obj,
)
