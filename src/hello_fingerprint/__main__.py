from .protocol import FingerprintError, parse_client_hello
from .fingerprint import ConnectionState, TlsFields, fingerprint_summary, to_json_obj
from .names_and_numbers import Protocol
from .capture import DEFAULT_TIMEOUT, DEFAULT_MAX_WORKERS, DEFAULT_ALPN_PROTOCOLS, make_server_context, serve

import sys
import json
import logging
import argparse
parser = argparse.ArgumentParser(prog="python -m hello_fingerprint", formatter_class=argparse.ArgumentDefaultsHelpFormatter)
parser.add_argument("--verbose", "-v", action="count", default=0, help="increase output verbosity")
subparsers = parser.add_subparsers(dest="command", required=True)

parse_parser = subparsers.add_parser("parse", help="decode a captured Client Hello record and print its fingerprints", formatter_class=argparse.ArgumentDefaultsHelpFormatter)
parse_parser.add_argument("file", help="file with the raw TLS record, or '-' for stdin")
parse_parser.add_argument("--hex", default=False, action=argparse.BooleanOptionalAction, help="input is hex encoded instead of raw bytes")
parse_parser.add_argument("--strict", default=False, action=argparse.BooleanOptionalAction, help="reject truncated cipher suites and malformed extension entries")
parse_parser.add_argument("--negotiated-version", "-n", default=None, help=f"protocol negotiated for the connection, used by JA4, one of {', '.join(p.name for p in Protocol)}")
parse_parser.add_argument("--server-name", "-s", default=None, help="SNI value seen by the server, used by JA4")
parse_parser.add_argument("--alpn", "-a", default="", help="ALPN protocol negotiated for the connection, used by JA4")

serve_parser = subparsers.add_parser("serve", help="run a TLS server that replies to each client with its fingerprints", formatter_class=argparse.ArgumentDefaultsHelpFormatter)
serve_parser.add_argument("--cert", required=True, help="PEM certificate chain file")
serve_parser.add_argument("--key", required=True, help="PEM private key file")
serve_parser.add_argument("--host", default="0.0.0.0", help="address to listen on")
serve_parser.add_argument("--port", "-p", type=int, default=8443, help="port to listen on")
serve_parser.add_argument("--alpn", dest="alpn_str", default=",".join(DEFAULT_ALPN_PROTOCOLS), help="comma separated ALPN protocols accepted by the server, in order of preference")
serve_parser.add_argument("--timeout", "-t", type=float, default=DEFAULT_TIMEOUT, help="seconds allowed for a client to send its Client Hello and finish the handshake")
serve_parser.add_argument("--max-workers", "-w", type=int, default=DEFAULT_MAX_WORKERS, help="maximum number of connections handled at the same time")
args = parser.parse_args()

logging.basicConfig(
    datefmt='%Y-%m-%d %H:%M:%S',
    format='{asctime}.{msecs:0<3.0f} {module} {threadName} {levelname}: {message}',
    style='{',
    level=[logging.WARNING, logging.INFO, logging.DEBUG][min(2, args.verbose)]
)

if args.command == "parse":
    try:
        version = Protocol[args.negotiated_version].value if args.negotiated_version else 0
    except KeyError as e:
        parser.error(f'invalid protocol name "{e.args[0]}", must be one of {", ".join(p.name for p in Protocol)}')

    if args.file == '-':
        data = sys.stdin.buffer.read()
    else:
        with open(args.file, 'rb') as f:
            data = f.read()
    if args.hex:
        try:
            data = bytes.fromhex(data.decode('ascii'))
        except ValueError:
            parser.error(f'{args.file} is not valid hex')

    try:
        client_hello = parse_client_hello(data, strict=args.strict)
    except FingerprintError as e:
        print(f'Parse error: {e}', file=sys.stderr)
        if args.verbose > 0:
            raise
        else:
            exit(1)
    connection_state = ConnectionState(version=version, server_name=args.server_name, negotiated_protocol=args.alpn)
    summary = fingerprint_summary(TlsFields.from_client_hello(client_hello), connection_state)
    summary['client_hello'] = client_hello
    json.dump(to_json_obj(summary), sys.stdout, indent=2)

elif args.command == "serve":
    alpn_protocols = [p for p in args.alpn_str.split(',') if p]
    try:
        context = make_server_context(args.cert, args.key, alpn_protocols)
    except FingerprintError as e:
        print(f'Server error: {e}', file=sys.stderr)
        exit(1)
    on_record = lambda record: print(json.dumps(to_json_obj(record.summary())), flush=True)
    try:
        serve(args.host, args.port, context, timeout_in_seconds=args.timeout, max_workers=args.max_workers, on_record=on_record)
    except KeyboardInterrupt:
        pass
