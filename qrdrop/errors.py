class QRDropError(Exception):
	"""Base class for every error that ends up as an HTTP response or a startup failure."""
	status = 500

	def __init__(self, message:str, status:int = None):
		self.message = message
		if status is not None:
			self.status = status
		super().__init__(self.message)

class ValidationError(QRDropError):
	"""Malformed request: bad multipart body, missing boundary, bad filename."""
	status = 400

class NotFoundError(QRDropError):
	status = 404

class AccessDeniedError(QRDropError):
	"""Symlink, traversal attempt or disallowed file type."""
	status = 403

class CapacityError(QRDropError):
	"""Oversized upload or exhausted unique-name attempts."""
	status = 413

class TransientIOError(QRDropError):
	status = 500

class FatalConfigError(QRDropError):
	"""The server cannot start with the given configuration."""
	status = 500
