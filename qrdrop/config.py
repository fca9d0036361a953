import os
import re
import sys
import tomllib
from typing import Dict, List

from qrdrop import logger
from qrdrop.constants import DEFAULT_TIMEOUT, DEFAULT_RATE_LIMIT_WINDOW, MAX_FILE_SIZE, DEFAULT_OUTPUT_DIRECTORY

BOOL_KEYS = ['secure', 'keep_alive', 'zip', 'verbose', 'debug']
INT_KEYS = ['port', 'timeout', 'rate_limit', 'rate_limit_window', 'max_file_size']
LIST_KEYS = ['files', 'allow_ips', 'allow_types']
STR_KEYS = ['directory', 'output', 'cert', 'key', 'host', 'url_path', 'log_file']

# alternative spellings accepted in config files
KEY_ALIASES = {
	'path' : 'url_path',
	'allowed_types' : 'allow_types',
	'allowed_ips' : 'allow_ips',
}

ENV_PREFIX = 'QRDROP_'


def _snake_case(name:str):
	name = re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()
	name = name.replace('-', '_')
	return KEY_ALIASES.get(name, name)

def _parse_bool(value):
	if isinstance(value, bool):
		return value
	return str(value).strip().lower() in ('1', 'true', 'yes', 'on')

def _parse_list(value):
	if isinstance(value, (list, tuple)):
		return [str(v).strip() for v in value if str(v).strip()]
	return [v.strip() for v in str(value).split(',') if v.strip()]


class QRDropConfig:
	"""Every runtime option of the server, with defaults."""
	def __init__(self):
		self.files:List[str] = []
		self.directory:str = None
		self.output:str = DEFAULT_OUTPUT_DIRECTORY
		self.secure:bool = False
		self.cert:str = None
		self.key:str = None
		self.port:int = None
		self.host:str = None
		self.timeout:int = DEFAULT_TIMEOUT
		self.keep_alive:bool = False
		self.zip:bool = False
		self.url_path:str = None
		self.allow_ips:List[str] = []
		self.rate_limit:int = None
		self.rate_limit_window:int = DEFAULT_RATE_LIMIT_WINDOW
		self.allow_types:List[str] = []
		self.max_file_size:int = MAX_FILE_SIZE
		self.verbose:bool = False
		self.debug:bool = False
		self.log_file:str = None

	def update(self, values:Dict):
		"""Applies every non-None value. Unknown keys are ignored."""
		for key, value in values.items():
			if value is None:
				continue
			if not hasattr(self, key):
				logger.debug('Ignoring unknown config key %s' % key)
				continue
			setattr(self, key, value)
		return self

	@property
	def share_paths(self):
		paths = list(self.files)
		if self.directory is not None:
			paths.append(self.directory)
		return paths

	@property
	def is_secure(self):
		return self.secure is True or self.cert is not None or self.key is not None

	def to_dict(self):
		return dict(self.__dict__)

	def __repr__(self):
		return '<QRDropConfig %s>' % self.to_dict()


def get_config_path(custom_path:str = None):
	"""~/.config/qrdrop/config.toml (XDG_CONFIG_HOME honored), %APPDATA%\\qrdrop\\config.toml on Windows"""
	if custom_path is not None:
		return custom_path
	if sys.platform == 'win32':
		base = os.environ.get('APPDATA', os.path.join(os.path.expanduser('~'), 'AppData', 'Roaming'))
	else:
		base = os.environ.get('XDG_CONFIG_HOME', os.path.join(os.path.expanduser('~'), '.config'))
	return os.path.join(base, 'qrdrop', 'config.toml')

def normalize_values(raw:Dict):
	"""
	Converts keys to snake_case and coerces the value types we can coerce.
	Values that cannot be coerced are kept as-is so validate_config can report them.
	"""
	result = {}
	for key, value in raw.items():
		key = _snake_case(key)
		if key in LIST_KEYS:
			value = _parse_list(value)
		elif key in BOOL_KEYS and isinstance(value, str):
			value = _parse_bool(value)
		elif key in INT_KEYS and isinstance(value, str):
			try:
				value = int(value.strip())
			except ValueError:
				pass
		result[key] = value
	return result

def load_config_file(path:str = None) -> Dict:
	"""
	Reads the TOML config file. A missing file yields an empty dict, an
	unreadable one is reported and ignored.
	"""
	path = get_config_path(path)
	try:
		with open(path, 'rb') as f:
			data = tomllib.load(f)
	except FileNotFoundError:
		return {}
	except (OSError, tomllib.TOMLDecodeError) as e:
		logger.warning('Could not load config file %s: %s' % (path, e))
		return {}
	return normalize_values(data)

def load_env_vars(environ = None) -> Dict:
	"""QRDROP_PORT=8080 -> {'port': 8080}"""
	if environ is None:
		environ = os.environ
	raw = {}
	for name, value in environ.items():
		if not name.startswith(ENV_PREFIX):
			continue
		key = name[len(ENV_PREFIX):].lower()
		if key == 'config':
			continue
		raw[key] = value
	return normalize_values(raw)

def merge_config(cli:Dict, file_config:Dict, env_config:Dict) -> QRDropConfig:
	"""Precedence: defaults < environment < config file < command line"""
	config = QRDropConfig()
	config.update(env_config)
	config.update(file_config)
	config.update(cli)
	return config

def validate_config(config:QRDropConfig) -> List[str]:
	errors = []
	if config.port is not None:
		if isinstance(config.port, bool) or not isinstance(config.port, int) or config.port < 0 or config.port > 65535:
			errors.append('Invalid port: %s. Must be between 0 and 65535.' % config.port)
	if isinstance(config.timeout, bool) or not isinstance(config.timeout, int) or config.timeout < 0:
		errors.append('Invalid timeout: %s. Must be a positive number.' % config.timeout)
	for key in BOOL_KEYS:
		value = getattr(config, key)
		if not isinstance(value, bool):
			errors.append('Invalid %s: %s. Must be a boolean.' % (key, value))
	if config.rate_limit is not None:
		if isinstance(config.rate_limit, bool) or not isinstance(config.rate_limit, int) or config.rate_limit < 1:
			errors.append('Invalid rate limit: %s. Must be at least 1.' % config.rate_limit)
	if isinstance(config.rate_limit_window, bool) or not isinstance(config.rate_limit_window, int) or config.rate_limit_window < 1:
		errors.append('Invalid rate limit window: %s. Must be at least 1 second.' % config.rate_limit_window)
	if isinstance(config.max_file_size, bool) or not isinstance(config.max_file_size, int) or config.max_file_size < 1:
		errors.append('Invalid max file size: %s.' % config.max_file_size)
	if (config.cert is None) != (config.key is None):
		errors.append('--cert and --key must be given together')
	return errors
