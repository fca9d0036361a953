import socket
import secrets
import ipaddress

from qrdrop import logger
from qrdrop.constants import DEFAULT_START_PORT, MAX_PORT_ATTEMPTS, RANDOM_PATH_LENGTH, RANDOM_PATH_CHARS
from qrdrop.errors import FatalConfigError


def detect_lan_ip():
	"""
	Address of the interface that routes to the outside world. No packet is
	sent, connecting a UDP socket only selects the route.
	"""
	s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
	try:
		s.connect(('8.8.8.8', 80))
		ip = s.getsockname()[0]
	except OSError as e:
		raise FatalConfigError('Could not detect the local network address: %s' % e)
	finally:
		s.close()

	if ipaddress.ip_address(ip).is_loopback:
		raise FatalConfigError('Could not detect the local network address (only loopback available)')
	return ip

def is_port_available(host:str, port:int):
	s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
	try:
		s.bind((host, port))
		return True
	except OSError:
		return False
	finally:
		s.close()

def find_available_port(host:str = '0.0.0.0', start_port:int = DEFAULT_START_PORT, max_attempts:int = MAX_PORT_ATTEMPTS):
	for port in range(start_port, min(start_port + max_attempts, 65536)):
		if is_port_available(host, port):
			return port
		logger.debug('Port %s is in use' % port)
	raise FatalConfigError('No free port found in %s-%s' % (start_port, start_port + max_attempts - 1))

def random_url_path(length:int = RANDOM_PATH_LENGTH):
	return ''.join(secrets.choice(RANDOM_PATH_CHARS) for _ in range(length))

def normalize_url_path(path:str):
	"""'abc' -> '/abc', '/' and '' -> '' (served from the root)"""
	if not path:
		return ''
	path = '/' + path.strip('/')
	if path == '/':
		return ''
	return path


class NetworkInfo:
	def __init__(self, host:str, port:int, url_path:str = '', secure:bool = False):
		self.host = host
		self.port = port
		self.url_path = normalize_url_path(url_path)
		self.secure = secure

	@property
	def scheme(self):
		return 'https' if self.secure is True else 'http'

	@property
	def url(self):
		host = self.host
		if ':' in host:
			host = '[%s]' % host
		return '%s://%s:%s%s/' % (self.scheme, host, self.port, self.url_path)

	def __str__(self):
		return self.url
