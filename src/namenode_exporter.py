import argparse
import logging
import socket
import sys
from socketserver import ThreadingMixIn
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from prometheus_client import CollectorRegistry, make_wsgi_app

from jmx_client import DEFAULT_TIMEOUT
from namenode_collector import NameNodeCollector

logger = logging.getLogger(__name__)

LANDING_PAGE = """<html>
<head><title>NameNode Exporter</title></head>
<body>
<h1>NameNode Exporter</h1>
<p><a href="{path}">Metrics</a></p>
</body>
</html>
"""


def parse_listen_address(address):
    """
    Splits a listen address of the form [host]:port.
    An empty host (':9070') means all interfaces.

    Returns:
        tuple: (host, port)
    """
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"Listen address '{address}' must be of the form [host]:port")
    try:
        port = int(port)
    except ValueError:
        raise ValueError(f"Invalid port in listen address '{address}'")
    if not 0 <= port <= 65535:
        raise ValueError(f"Port out of range in listen address '{address}'")
    # [::1]:9070 style IPv6 hosts
    return host.strip("[]"), port


def build_parser():
    parser = argparse.ArgumentParser(description='Prometheus exporter for HDFS NameNode JMX metrics')
    parser.add_argument('--web.listen-address', dest='listen_address', type=str, default=':9070',
                        help='Address on which to expose metrics and web interface.')
    parser.add_argument('--web.telemetry-path', dest='telemetry_path', type=str, default='/metrics',
                        help='Path under which to expose metrics.')
    parser.add_argument('--namenode.jmx.url', dest='jmx_url', type=str, default='http://localhost:50070/jmx',
                        help='Hadoop JMX URL.')
    parser.add_argument('--namenode.jmx.timeout', dest='jmx_timeout', type=float, default=DEFAULT_TIMEOUT,
                        help='Timeout in seconds for requests to the JMX URL.')
    parser.add_argument('--log.level', dest='log_level', type=str.upper, default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Only log messages with the given severity or above.')
    return parser


def parse_args(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        args.host, args.port = parse_listen_address(args.listen_address)
    except ValueError as e:
        parser.error(str(e))
    if not args.telemetry_path.startswith('/'):
        parser.error(f"Telemetry path '{args.telemetry_path}' must start with '/'")
    if args.jmx_timeout <= 0:
        parser.error("JMX timeout must be positive")
    return args


def make_app(registry, telemetry_path):
    """
    WSGI app serving the registry on the telemetry path and a landing page on '/'.
    """
    metrics_app = make_wsgi_app(registry)
    landing_page = LANDING_PAGE.format(path=telemetry_path).encode('utf-8')

    def app(environ, start_response):
        path = environ.get('PATH_INFO', '/')
        if path == telemetry_path:
            return metrics_app(environ, start_response)
        if path == '/':
            start_response('200 OK', [('Content-Type', 'text/html; charset=utf-8')])
            return [landing_page]
        start_response('404 Not Found', [('Content-Type', 'text/plain; charset=utf-8')])
        return [b'Not Found\n']

    return app


class ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    """Handles each scrape in its own thread."""
    daemon_threads = True
    # Accept IPv4 clients on an IPv6 wildcard socket
    dual_stack = False

    def server_bind(self):
        if self.dual_stack and self.address_family == socket.AF_INET6:
            self.socket.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
        super().server_bind()


class LoggingRequestHandler(WSGIRequestHandler):

    def log_message(self, format, *args):
        logger.debug(f"{self.client_address[0]} - {format % args}")


def ipv6_available():
    """Returns True if an IPv6 socket can be bound on this host."""
    if not socket.has_ipv6:
        return False
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_STREAM) as s:
            s.bind(('::1', 0))
        return True
    except OSError:
        return False


def resolve_listen_family(host, port):
    """
    Picks the socket family and bind address for a listen host.

    An empty host listens on all interfaces, IPv6 and IPv4 together where the
    host supports IPv6.

    Returns:
        tuple: (address_family, bind_host, dual_stack)
    """
    if not host:
        if ipv6_available():
            return socket.AF_INET6, '::', True
        return socket.AF_INET, '0.0.0.0', False
    infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE)
    family, _, _, _, sockaddr = infos[0]
    return family, sockaddr[0], False


def make_http_server(host, port, app):
    """
    Binds the listen socket for the app.
    Raises OSError if the host cannot be resolved or the socket cannot be bound.
    """
    family, bind_host, dual_stack = resolve_listen_family(host, port)

    class ListenServer(ThreadingWSGIServer):
        pass

    ListenServer.address_family = family
    ListenServer.dual_stack = dual_stack
    return make_server(bind_host, port, app, ListenServer, handler_class=LoggingRequestHandler)


def serve(host, port, app):
    """
    Binds the listen socket and serves until interrupted.
    Raises OSError if the socket cannot be bound.
    """
    httpd = make_http_server(host, port, app)
    try:
        httpd.serve_forever()
    finally:
        httpd.server_close()


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=args.log_level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    registry = CollectorRegistry()
    registry.register(NameNodeCollector(args.jmx_url, timeout=args.jmx_timeout))
    app = make_app(registry, args.telemetry_path)

    logger.info(f"Starting Server: {args.listen_address}")
    logger.info(f"Scraping NameNode JMX at {args.jmx_url}, serving metrics on {args.telemetry_path}")
    try:
        serve(args.host, args.port, app)
    except OSError as e:
        logger.critical(f"Could not listen on {args.listen_address}: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
