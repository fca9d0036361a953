import os
import ssl
import datetime
import ipaddress

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID

from qrdrop import logger
from qrdrop.constants import CERT_FILENAME, KEY_FILENAME, CERT_VALIDITY_DAYS, CERT_EXPIRY_WARNING_DAYS
from qrdrop.errors import FatalConfigError


class CertManager:
	"""
	Provides the certificate/key pair for HTTPS: either user supplied files or
	a self-signed pair generated (once) into cert_dir.
	"""
	def __init__(self, cert_file:str = None, key_file:str = None, cert_dir:str = None, hostname:str = None):
		self.custom = cert_file is not None or key_file is not None
		self.cert_dir = cert_dir if cert_dir is not None else os.getcwd()
		self.cert_file = cert_file if cert_file is not None else os.path.join(self.cert_dir, CERT_FILENAME)
		self.key_file = key_file if key_file is not None else os.path.join(self.cert_dir, KEY_FILENAME)
		self.hostname = hostname

	@staticmethod
	def generate_self_signed(hostname:str = 'localhost', key_size:int = 2048, days:int = CERT_VALIDITY_DAYS, now:datetime.datetime = None):
		"""
		The certificate is valid from five minutes before `now` (default: current time)
		for `days` days.

		Returns:
			tuple: (cert_pem, key_pem, None) or (None, None, exception)
		"""
		try:
			key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
			name = x509.Name([
				x509.NameAttribute(NameOID.COMMON_NAME, hostname),
				x509.NameAttribute(NameOID.ORGANIZATION_NAME, 'qrdrop'),
			])

			alt_names = [x509.DNSName('localhost')]
			try:
				alt_names.append(x509.IPAddress(ipaddress.ip_address(hostname)))
			except ValueError:
				if hostname != 'localhost':
					alt_names.append(x509.DNSName(hostname))
			alt_names.append(x509.IPAddress(ipaddress.ip_address('127.0.0.1')))

			if now is None:
				now = datetime.datetime.now(datetime.timezone.utc)
			cert = x509.CertificateBuilder().subject_name(
				name
			).issuer_name(
				name
			).public_key(
				key.public_key()
			).serial_number(
				x509.random_serial_number()
			).not_valid_before(
				now - datetime.timedelta(minutes=5)
			).not_valid_after(
				now + datetime.timedelta(days=days)
			).add_extension(
				x509.SubjectAlternativeName(alt_names), critical=False
			).add_extension(
				x509.BasicConstraints(ca=False, path_length=None), critical=True,
			).sign(key, hashes.SHA256())

			cert_pem = cert.public_bytes(serialization.Encoding.PEM)
			key_pem = key.private_bytes(
				encoding=serialization.Encoding.PEM,
				format=serialization.PrivateFormat.TraditionalOpenSSL,
				encryption_algorithm=serialization.NoEncryption(),
			)
			return cert_pem, key_pem, None
		except Exception as e:
			return None, None, e

	@staticmethod
	def load_expiry(cert_file:str):
		with open(cert_file, 'rb') as f:
			cert = x509.load_pem_x509_certificate(f.read())
		return cert.not_valid_after_utc

	@staticmethod
	def days_until_expiry(cert_file:str, now:datetime.datetime = None):
		if now is None:
			now = datetime.datetime.now(datetime.timezone.utc)
		delta = CertManager.load_expiry(cert_file) - now
		return delta.days

	def check_expiry(self):
		"""Logs a warning for expired certificates or ones expiring soon. Returns the remaining days."""
		days = CertManager.days_until_expiry(self.cert_file)
		if days < 0:
			logger.warning('Certificate %s has expired' % self.cert_file)
		elif days <= CERT_EXPIRY_WARNING_DAYS:
			logger.warning('Certificate %s expires in %d days' % (self.cert_file, days))
		return days

	def ensure_certificate(self):
		"""
		Makes sure the certificate and key files exist, generating a self-signed
		pair when no custom files were given. Returns (cert_file, key_file).
		"""
		if self.custom is True:
			for path in (self.cert_file, self.key_file):
				if path is None or not os.path.isfile(path):
					raise FatalConfigError('Certificate file not found: %s' % path)
			self.check_expiry()
			return self.cert_file, self.key_file

		if os.path.isfile(self.cert_file) and os.path.isfile(self.key_file):
			days = self.check_expiry()
			if days >= 0:
				logger.debug('Reusing certificate %s' % self.cert_file)
				return self.cert_file, self.key_file
			logger.info('Regenerating expired certificate')

		cert_pem, key_pem, err = CertManager.generate_self_signed(self.hostname or 'localhost')
		if err is not None:
			raise FatalConfigError('Certificate generation failed: %s' % err)

		with open(self.cert_file, 'wb') as f:
			f.write(cert_pem)
		fd = os.open(self.key_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
		with os.fdopen(fd, 'wb') as f:
			f.write(key_pem)
		logger.info('Generated self-signed certificate %s' % self.cert_file)
		return self.cert_file, self.key_file

	def get_ssl_context(self):
		cert_file, key_file = self.ensure_certificate()
		ssl_ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
		ssl_ctx.minimum_version = ssl.TLSVersion.TLSv1_2
		try:
			ssl_ctx.load_cert_chain(cert_file, key_file)
		except (ssl.SSLError, OSError) as e:
			raise FatalConfigError('Could not load certificate %s: %s' % (cert_file, e))
		return ssl_ctx
