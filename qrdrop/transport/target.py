import ssl
import enum
import ipaddress


class ServerProto(enum.Enum):
	TCP = 1
	SSL_TCP = 2

class ServerTarget:
	def __init__(self, ip:str, port:int, protocol:ServerProto = ServerProto.TCP, ssl_ctx:ssl.SSLContext = None, hostname:str = None):
		self.port = port
		self.protocol = protocol
		self.ssl_ctx = ssl_ctx
		self.hostname = hostname
		self.ip = None

		try:
			ipaddress.ip_address(ip)
			self.ip = ip
		except ValueError:
			if ip is not None:
				self.hostname = ip

		if self.ip is None and self.hostname is None:
			raise ValueError('Both IP and Hostname can\'t be none!')
		if self.protocol == ServerProto.SSL_TCP and self.ssl_ctx is None:
			raise ValueError('SSL_TCP target requires an SSL context')

	def get_ip_or_hostname(self):
		if self.ip is not None:
			return self.ip
		return self.hostname

	def get_ssl_context(self):
		if self.protocol != ServerProto.SSL_TCP:
			return None
		return self.ssl_ctx

	@property
	def scheme(self):
		return 'https' if self.protocol == ServerProto.SSL_TCP else 'http'

	def __str__(self):
		return '%s://%s:%s' % (self.scheme, self.get_ip_or_hostname(), self.port)
