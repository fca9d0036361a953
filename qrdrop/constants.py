
DEFAULT_TIMEOUT = 10 * 60 # seconds

DEFAULT_START_PORT = 1673
MAX_PORT_ATTEMPTS = 100

RANDOM_PATH_LENGTH = 16
RANDOM_PATH_CHARS = 'abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789'

MAX_FILE_SIZE = 10 * 1024 * 1024 * 1024
MAX_FILES_PER_REQUEST = 100
MAX_RANGES = 5
MAX_UPLOAD_ATTEMPTS = 100

DEFAULT_RATE_LIMIT = 100
DEFAULT_RATE_LIMIT_WINDOW = 60 # seconds
RATE_LIMIT_CLEANUP_INTERVAL = 60 # seconds

DOWNLOAD_CHUNK_SIZE = 512 * 1024
UPLOAD_CHUNK_SIZE = 64 * 1024
UPLOAD_READ_TIMEOUT = 30

ZIP_FILENAME = 'qrdrop-files.zip'
ZIP_CLEANUP_DELAY = 5 # seconds

CERT_FILENAME = 'qrdrop-cert.pem'
KEY_FILENAME = 'qrdrop-key.pem'
CERT_VALIDITY_DAYS = 365
CERT_EXPIRY_WARNING_DAYS = 30

DEFAULT_OUTPUT_DIRECTORY = '.'

MIME_TYPES = {
	'.html': 'text/html',
	'.htm': 'text/html',
	'.css': 'text/css',
	'.js': 'application/javascript',
	'.json': 'application/json',
	'.png': 'image/png',
	'.jpg': 'image/jpeg',
	'.jpeg': 'image/jpeg',
	'.gif': 'image/gif',
	'.svg': 'image/svg+xml',
	'.pdf': 'application/pdf',
	'.zip': 'application/zip',
	'.txt': 'text/plain',
	'.md': 'text/markdown',
	'.mp4': 'video/mp4',
	'.mp3': 'audio/mpeg',
}
DEFAULT_MIME_TYPE = 'application/octet-stream'
