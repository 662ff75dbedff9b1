from enum import Enum
from typing import FrozenSet

class Protocol(Enum):
    TLS1_3 = 0x0304
    TLS1_2 = 0x0303
    TLS1_1 = 0x0302
    TLS1_0 = 0x0301
    SSLv3 = 0x0300

    def __repr__(self):
        return self.name

    @property
    def ja4_code(self) -> str:
        """ Two digit version code used in the first JA4 segment. SSLv3 has none. """
        return {
            Protocol.TLS1_3: '13',
            Protocol.TLS1_2: '12',
            Protocol.TLS1_1: '11',
            Protocol.TLS1_0: '10',
        }.get(self, '00')

class RecordType(Enum):
    INVALID = 0x00
    CHANGE_CIPHER_SPEC = 0x14
    ALERT = 0x15
    HANDSHAKE = 0x16
    APPLICATION_DATA = 0x17

class HandshakeType(Enum):
    client_hello = 0x01
    server_hello = 0x02
    new_session_ticket = 0x04
    end_of_early_data = 0x05
    encrypted_extensions = 0x08
    certificate = 0x0B
    server_key_exchange = 0x0C
    certificate_request = 0x0D
    server_hello_done = 0x0E
    certificate_verify = 0x0F
    finished = 0x14
    certificate_status = 0x16
    key_update = 0x18
    message_hash = 0x19

class ExtensionType(Enum):
    server_name = 0
    max_fragment_length = 1
    client_certificate_url = 2
    trusted_ca_keys = 3
    truncated_hmac = 4
    status_request = 5
    user_mapping = 6
    client_authz = 7
    server_authz = 8
    cert_type = 9
    supported_groups = 10
    ec_point_formats = 11
    srp = 12
    signature_algorithms = 13
    use_srtp = 14
    heartbeat = 15
    application_layer_protocol_negotiation = 16
    status_request_v2 = 17
    signed_certificate_timestamp = 18
    client_certificate_type = 19
    server_certificate_type = 20
    padding = 21
    encrypt_then_mac = 22
    extended_master_secret = 23
    token_binding = 24
    cached_info = 25
    tls_lts = 26
    compress_certificate = 27
    record_size_limit = 28
    pwd_protect = 29
    pwd_clear = 30
    password_salt = 31
    ticket_pinning = 32
    tls_cert_with_extern_psk = 33
    delegated_credentials = 34
    session_ticket = 35
    TLMSP = 36
    TLMSP_proxying = 37
    TLMSP_delegate = 38
    supported_ekt_ciphers = 39
    pre_shared_key = 41
    early_data = 42
    supported_versions = 43
    cookie = 44
    psk_key_exchange_modes = 45
    certificate_authorities = 47
    oid_filters = 48
    post_handshake_auth = 49
    signature_algorithms_cert = 50
    key_share = 51
    transparency_info = 52
    connection_id = 54
    external_id_hash = 55
    external_session_id = 56
    quic_transport_parameters = 57
    ticket_request = 58
    dnssec_chain = 59
    application_settings = 17513
    encrypted_client_hello = 65037
    renegotiation_info = 65281

# Reserved "greasing" values from RFC 8701: 0x0A0A, 0x1A1A, ..., 0xFAFA.
GREASE_VALUES: FrozenSet[int] = frozenset(0x0A0A + 0x1010 * i for i in range(16))
