import os
import sys
import asyncio
import logging
import argparse

from qrdrop import logger
from qrdrop._version import __version__, __banner__
from qrdrop.errors import QRDropError
from qrdrop.config import load_config_file, load_env_vars, merge_config, validate_config, get_config_path
from qrdrop.certmanager import CertManager
from qrdrop.fileserver import QRDropServer
from qrdrop.network import detect_lan_ip
from qrdrop.qr import print_qr


def _comma_list(value):
    return [v.strip() for v in value.split(',') if v.strip()]


def build_parser():
    parser = argparse.ArgumentParser(
        prog='qrdrop',
        description='Share files on the local network and receive uploads, with a QR code for the URL',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  %(prog)s report.pdf                         # Share a file
  %(prog)s -d ./photos                        # Share the files of a directory
  %(prog)s -o ./received                      # Receive files into a directory
  %(prog)s -f doc.pdf -o ./received --secure  # Share and receive over HTTPS
  %(prog)s -d ./photos --zip                  # Share a directory as one zip archive
        ''')

    parser.add_argument('paths', nargs='*', help='Files to share')
    parser.add_argument('-f', '--file', dest='files', action='append', default=None, help='File to share (repeatable)')
    parser.add_argument('-d', '--directory', default=None, help='Share the files of this directory')
    parser.add_argument('-o', '--output', default=None, help='Directory for received files (default: current)')
    parser.add_argument('--secure', action='store_true', default=None, help='Serve over HTTPS with a self-signed certificate')
    parser.add_argument('--cert', default=None, help='Custom TLS certificate (PEM), implies --secure')
    parser.add_argument('--key', default=None, help='Custom TLS private key (PEM), implies --secure')
    parser.add_argument('-p', '--port', type=int, default=None, help='Port to listen on (default: first free port from 1673)')
    parser.add_argument('-H', '--host', default=None, help='Address to bind and advertise (default: detected LAN address)')
    parser.add_argument('-t', '--timeout', type=int, default=None, help='Shut down after this many seconds (default: 600, 0 disables)')
    parser.add_argument('--keep-alive', action='store_true', default=None, help='Never shut down on timeout')
    parser.add_argument('--zip', action='store_true', default=None, help='Share everything as a single zip archive')
    parser.add_argument('--url-path', default=None, help='URL path prefix (default: random, "/" for none)')
    parser.add_argument('--config', default=None, help='Config file (default: %s)' % get_config_path())
    parser.add_argument('--allow-ips', type=_comma_list, default=None, help='Comma separated client allow-list: IPs, CIDRs or wildcards (192.168.*.*)')
    parser.add_argument('--rate-limit', type=int, default=None, help='Maximum requests per client per window')
    parser.add_argument('--rate-limit-window', type=int, default=None, help='Rate limit window in seconds (default: 60)')
    parser.add_argument('--allow-types', type=_comma_list, default=None, help='Comma separated file extensions allowed for download and upload')
    parser.add_argument('--max-file-size', type=int, default=None, help='Maximum upload size per file in bytes (default: 10GiB)')
    parser.add_argument('-v', '--verbose', action='store_true', default=None, help='Log every request')
    parser.add_argument('--debug', action='store_true', default=None, help='Debug logging')
    parser.add_argument('--log-file', default=None, help='Also write the log to this file')
    parser.add_argument('--version', action='version', version='qrdrop %s' % __version__)
    return parser


def args_to_dict(args):
    files = list(args.paths or [])
    if args.files:
        files.extend(args.files)
    values = dict(vars(args))
    values.pop('paths')
    values.pop('config')
    values['files'] = files if len(files) > 0 else None
    return values


def setup_logging(config):
    if config.debug is True:
        logger.setLevel(logging.DEBUG)
    elif config.verbose is True:
        logger.setLevel(logging.INFO)
    else:
        logger.setLevel(logging.WARNING)

    if config.log_file is not None:
        handler = logging.FileHandler(config.log_file)
        handler.setFormatter(logging.Formatter('%(asctime)s %(name)-12s %(levelname)-8s %(message)s'))
        logger.addHandler(handler)


async def console_print(msg = ''):
    print(msg)


async def run_server(config, ssl_ctx):
    server = QRDropServer(config, ssl_ctx=ssl_ctx, print_cb=console_print)
    network = await server.start()
    try:
        catalog = server.context.catalog
        print(__banner__)
        if len(catalog) > 0:
            print('Sharing %d file(s): %s' % (len(catalog), ', '.join(catalog.names())))
        print('Received files go to: %s' % server.context.output_dir)
        print()
        print_qr(network.url)
        print()
        if config.keep_alive is False and config.timeout:
            print('Server stops after %d seconds. Press Ctrl+C to quit.' % config.timeout)
        else:
            print('Press Ctrl+C to quit.')
        await server.wait()
        if server.timed_out is True:
            print('Timeout reached, server stopped')
    finally:
        await server.stop()


def main():
    parser = build_parser()
    args = parser.parse_args()

    env_config = load_env_vars()
    file_config = load_config_file(args.config or os.environ.get('QRDROP_CONFIG'))
    config = merge_config(args_to_dict(args), file_config, env_config)

    errors = validate_config(config)
    if len(errors) > 0:
        for error in errors:
            print('Error: %s' % error, file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    logger.debug('Configuration: %s' % config)

    try:
        ssl_ctx = None
        if config.is_secure:
            hostname = config.host if config.host is not None else detect_lan_ip()
            certmanager = CertManager(config.cert, config.key, hostname=hostname)
            ssl_ctx = certmanager.get_ssl_context()
        asyncio.run(run_server(config, ssl_ctx))
    except KeyboardInterrupt:
        print('\nServer stopped by user')
    except QRDropError as e:
        print('Error: %s' % e.message, file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
