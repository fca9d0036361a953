import datetime
from typing import List

from qrdrop import logger
from qrdrop.ratelimit import RateLimiter
from qrdrop.security import get_client_ip, is_ip_allowed
from qrdrop.http.messages import HTTPRequest, HTTPResponse


class AccessGuard:
	"""
	Per-request admission: IP allow-list first, rate limiter second.
	Every request is logged, at INFO when verbose and DEBUG otherwise.
	"""
	def __init__(self, allow_ips:List[str] = None, limiter:RateLimiter = None, verbose:bool = False):
		self.allow_ips = allow_ips or []
		self.limiter = limiter
		self.verbose = verbose

	def log_request(self, request:HTTPRequest, ip:str):
		msg = '%s %s from %s [%s] at %s' % (
			request.method, request.path, ip, request.user_agent,
			datetime.datetime.now(datetime.timezone.utc).isoformat()
		)
		if self.verbose is True:
			logger.info(msg)
		else:
			logger.debug(msg)

	def log(self, request:HTTPRequest) -> str:
		"""Logs the request without admission checks. Returns the resolved client IP."""
		ip = get_client_ip(request.peer_ip, request.headers)
		self.log_request(request, ip)
		return ip

	def check(self, request:HTTPRequest):
		"""
		Returns:
			tuple: (allowed, response) where response is the denial to send back, None if allowed
		"""
		ip = self.log(request)

		if len(self.allow_ips) > 0 and not is_ip_allowed(ip, self.allow_ips):
			logger.warning('Access denied for %s (%s %s)' % (ip, request.method, request.path))
			return False, HTTPResponse.text(403, 'Access denied')

		if self.limiter is not None and not self.limiter.check(ip):
			reset_in = self.limiter.reset_in_seconds(ip)
			logger.warning('Rate limit exceeded for %s' % ip)
			response = HTTPResponse.text(429, 'Rate limit exceeded')
			response.set_header('X-RateLimit-Limit', self.limiter.max_requests)
			response.set_header('X-RateLimit-Remaining', self.limiter.remaining(ip))
			response.set_header('X-RateLimit-Reset', reset_in)
			response.set_header('Retry-After', reset_in)
			return False, response

		return True, None
