import json
import pytest
from hello_fingerprint import *
from conftest import BROWSER_EXTENSIONS, build_client_hello, u16_list

TLS13_STATE = ConnectionState(version=0x0304, server_name='example.com', negotiated_protocol='h2')

def test_grease_values():
    assert len(GREASE_VALUES) == 16
    assert sorted(GREASE_VALUES) == [0x0A0A, 0x1A1A, 0x2A2A, 0x3A3A, 0x4A4A, 0x5A5A, 0x6A6A, 0x7A7A, 0x8A8A, 0x9A9A, 0xAAAA, 0xBABA, 0xCACA, 0xDADA, 0xEAEA, 0xFAFA]
    for value in range(0x10000):
        expected = (value & 0x0F0F) == 0x0A0A and (value >> 12) == ((value >> 4) & 0x0F)
        assert is_grease(value) == expected, hex(value)

def test_remove_grease():
    values = [0x0A0A, 0x1301, 0xFAFA, 0x1302, 0x0A0B, 0x1A1A, 29]
    filtered = remove_grease(values)
    assert filtered == [0x1301, 0x1302, 0x0A0B, 29]
    assert len(filtered) <= len(values)
    assert not any(is_grease(value) for value in filtered)
    assert remove_grease([]) == []

def test_fields(browser_hello):
    fields = TlsFields.from_client_hello(parse_client_hello(browser_hello))
    assert fields.ciphers == (0x0A0A, 0x1301, 0x1302)
    assert fields.extensions == (0x1A1A, 0, 10, 11, 13, 16, 43)
    assert fields.curves == (0x2A2A, 29, 23)
    assert fields.points == (0,)
    assert fields.protocols == ('h2', 'http/1.1')
    assert fields.versions == (0x3A3A, 0x0304, 0x0303)
    assert fields.algorithms == (0x0403, 0x0804)
    assert fields.random_time == '2024-01-01 00:00:00+00:00'
    assert fields.random_bytes == bytes(range(28)).hex()
    assert fields.session_id == 32*'07'
    assert fields.compression_methods == '00'

def test_ja3(browser_hello):
    fields = TlsFields.from_client_hello(parse_client_hello(browser_hello))
    ja3, ja3n = fields.ja3()
    assert ja3 == '772,4865-4866,0-10-11-13-16-43,29-23,0'
    assert ja3n == '772,4865-4866,,29-23,0'
    assert md5_hex(ja3) == '3c75510b9ce1948711b763c60b2d72e3'
    assert md5_hex(ja3n) == 'b6b4677a52b98765a82ad681b7e1a3a0'

def test_ja3n_only_differs_in_extensions(browser_hello):
    ja3, ja3n = TlsFields.from_client_hello(parse_client_hello(browser_hello)).ja3()
    parts = ja3.split(',')
    assert len(parts) == 5
    parts[2] = ''
    assert ','.join(parts) == ja3n

def test_ja3_keeps_wire_order():
    extensions = [(43, u16_list([0x0303], prefix_width=1)), (23, b''), (10, u16_list([24, 23, 29])), (0, b'')]
    fields = TlsFields.from_client_hello(parse_client_hello(build_client_hello(cipher_suites=[0xC02F, 0x1302, 0x1301], extensions=extensions)))
    ja3, _ = fields.ja3()
    assert ja3 == '771,49199-4866-4865,43-23-10-0,24-23-29,'

def test_ja3_requires_versions():
    fields = TlsFields.from_client_hello(parse_client_hello(build_client_hello()))
    with pytest.raises(MissingDataError):
        fields.ja3()

def test_ja3_requires_non_grease_version():
    data = build_client_hello(extensions=[(43, u16_list([0x0A0A], prefix_width=1))])
    with pytest.raises(MissingDataError):
        TlsFields.from_client_hello(parse_client_hello(data)).ja3()

def test_ja4(browser_hello):
    fields = TlsFields.from_client_hello(parse_client_hello(browser_hello))
    # sha256('48654866') and sha256('0101113164310272052'), truncated.
    assert fields.ja4(TLS13_STATE) == 't13d0206h2_7484f5988a7b_4b86d8159e8c'

def test_ja4_order_independent(browser_hello):
    shuffled = build_client_hello(cipher_suites=[0x1302, 0x1301, 0x0A0A], extensions=list(reversed(BROWSER_EXTENSIONS)))
    original = TlsFields.from_client_hello(parse_client_hello(browser_hello)).ja4(TLS13_STATE)
    assert TlsFields.from_client_hello(parse_client_hello(shuffled)).ja4(TLS13_STATE) == original

def test_ja4_sorts_numerically():
    # String sorting would put 10 before 9 and 4866 before 49199.
    data = build_client_hello(cipher_suites=[0xC02F, 0x1302, 0x000A, 0x0009], extensions=[(13, u16_list([0x0403])), (10, u16_list([29])), (0, b''), (43, u16_list([0x0304], prefix_width=1))])
    fields = TlsFields.from_client_hello(parse_client_hello(data))
    ja4_a, ja4_b, ja4_c = fields.ja4(TLS13_STATE).split('_')
    assert ja4_a == 't13d0404h2'
    # sha256('910486649199') and sha256('01013431027'), truncated.
    assert ja4_b == 'a9f45313d35e'
    assert ja4_c == '856f178eb36f'

def test_ja4_segments_are_hex():
    fields = TlsFields.from_client_hello(parse_client_hello(build_client_hello()))
    _, ja4_b, ja4_c = fields.ja4(TLS13_STATE).split('_')
    for segment in (ja4_b, ja4_c):
        assert len(segment) == 12
        assert segment == segment.lower()
        int(segment, 16)

def test_ja4_empty_lists():
    fields = TlsFields.from_client_hello(parse_client_hello(build_client_hello(cipher_suites=[0x0A0A])))
    assert fields.ja4(ConnectionState(version=0x0303)) == 't12i000000_e3b0c44298fc_e3b0c44298fc'

def test_ja4_caps_counts():
    data = build_client_hello(cipher_suites=list(range(1, 150)))
    ja4_a = TlsFields.from_client_hello(parse_client_hello(data)).ja4(TLS13_STATE).split('_')[0]
    assert ja4_a == 't13d9900h2'
    assert len(ja4_a) == 10

@pytest.mark.parametrize('version, code', [
    (0x0304, '13'),
    (0x0303, '12'),
    (0x0302, '11'),
    (0x0301, '10'),
    (0x0300, '00'),
    (0x7F1C, '00'),
    (0, '00'),
])
def test_version_code(version, code):
    assert ConnectionState(version=version).version_code() == code

@pytest.mark.parametrize('server_name, code', [
    (None, 'i'),
    ('', 'i'),
    ('example.com', 'd'),
    ('localhost', 'd'),
    ('127.0.0.1', 'i'),
    ('::1', 'i'),
    ('[2001:db8::1]', 'i'),
    ('1.2.3.4.example.com', 'd'),
])
def test_server_name_code(server_name, code):
    assert ConnectionState(version=0x0304, server_name=server_name).server_name_code() == code

@pytest.mark.parametrize('protocol, code', [
    ('', '00'),
    ('x', 'x0'),
    ('h2', 'h2'),
    ('h3', 'h3'),
    ('http/1.1', 'h1'),
    ('http/1.0', 'ht'),
    ('spdy/3.1', 'sp'),
])
def test_protocol_code(protocol, code):
    assert ConnectionState(version=0x0304, negotiated_protocol=protocol).protocol_code() == code

def test_record(browser_hello):
    record = FingerprintRecord(browser_hello, TLS13_STATE)
    assert record.client_hello() == parse_client_hello(browser_hello)
    assert record.ja3() == ('772,4865-4866,0-10-11-13-16-43,29-23,0', '772,4865-4866,,29-23,0')
    assert record.ja4() == 't13d0206h2_7484f5988a7b_4b86d8159e8c'

def test_record_strict_client_hello():
    record = FingerprintRecord(build_client_hello(raw_cipher_suites=b'\x13'), TLS13_STATE)
    assert record.client_hello().cipher_suites == (0x0A0A, 0x1301, 0x1302)
    with pytest.raises(MalformedFieldError):
        record.client_hello(strict=True)

def test_record_propagates_decode_errors():
    record = FingerprintRecord(b'\x16\x03\x01', TLS13_STATE)
    with pytest.raises(MalformedFieldError):
        record.ja4()

def test_summary(browser_hello):
    summary = FingerprintRecord(browser_hello, TLS13_STATE).summary()
    assert summary['ja3'] == '772,4865-4866,0-10-11-13-16-43,29-23,0'
    assert summary['ja3_hash'] == '3c75510b9ce1948711b763c60b2d72e3'
    assert summary['ja3n_hash'] == 'b6b4677a52b98765a82ad681b7e1a3a0'
    assert summary['ja4'] == 't13d0206h2_7484f5988a7b_4b86d8159e8c'
    assert summary['connection'] == TLS13_STATE

def test_summary_without_versions():
    summary = FingerprintRecord(build_client_hello(), TLS13_STATE).summary()
    assert summary['ja3'] is None
    assert summary['ja3_hash'] is None
    assert summary['ja4'].startswith('t13d0200h2_')

def test_summary_to_json(browser_hello):
    client_hello = parse_client_hello(browser_hello)
    summary = fingerprint_summary(TlsFields.from_client_hello(client_hello), TLS13_STATE)
    summary['client_hello'] = client_hello
    obj = json.loads(json.dumps(to_json_obj(summary)))
    assert obj['connection'] == {'version': 0x0304, 'server_name': 'example.com', 'negotiated_protocol': 'h2'}
    assert obj['fields']['ciphers'] == [0x0A0A, 0x1301, 0x1302]
    assert obj['client_hello']['session_id'] == 32*'07'
    assert obj['client_hello']['extensions'][1] == {'type': 0, 'data': '000e00000b6578616d706c652e636f6d'}

def test_to_json_obj_enums():
    assert to_json_obj({Protocol.TLS1_3: [ExtensionType.supported_versions]}) == {'TLS1_3': ['supported_versions']}
    assert to_json_obj(frozenset([3, 1])) == [1, 3]
