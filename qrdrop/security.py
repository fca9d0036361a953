import os
import re
import ipaddress
import urllib.parse
from typing import List

from qrdrop import logger


def recursive_decode(value:str) -> str:
	"""
	Percent-decodes the value until it stops changing.
	If a decoding step fails the last successful result is returned.
	"""
	current = value
	while True:
		try:
			decoded = urllib.parse.unquote(current, errors='strict')
		except UnicodeDecodeError:
			return current
		if decoded == current:
			return current
		current = decoded

def _is_within(path:str, base:str) -> bool:
	if path == base:
		return True
	if base.endswith(os.sep):
		return path.startswith(base)
	return path.startswith(base + os.sep)

def validate_path(requested:str, base_dir:str):
	"""
	Resolves a requested name against base_dir.

	Args:
		requested (str): name as it arrived in the URL (may be percent-encoded)
		base_dir (str): directory the result must stay inside

	Returns:
		str or None: canonical absolute path, None if the request escapes
		base_dir, points to a symlink or does not exist
	"""
	try:
		decoded = recursive_decode(requested)
		if '\x00' in decoded:
			return None
		normalized = os.path.normpath(decoded.replace('\\', '/'))
		candidate = os.path.join(os.path.abspath(base_dir), normalized)
		if os.path.islink(candidate):
			logger.warning('Rejected symlink: %s' % requested)
			return None

		real_base = os.path.realpath(base_dir, strict=True)
		real_candidate = os.path.realpath(candidate, strict=True)
		if not _is_within(real_candidate, real_base):
			logger.warning('Rejected path outside of share root: %s' % requested)
			return None
		return real_candidate
	except (OSError, ValueError):
		return None

def is_symlink(path:str) -> bool:
	try:
		return os.path.islink(path)
	except (OSError, ValueError):
		return False

def normalize_types(allowed_types:List[str]):
	if not allowed_types:
		return []
	result = []
	for ext in allowed_types:
		ext = ext.strip().lower()
		if not ext:
			continue
		if ext.startswith('.'):
			ext = ext[1:]
		result.append(ext)
	return result

def is_file_type_allowed(filename:str, allowed_types:List[str] = None) -> bool:
	"""Extension check, case-insensitive. An empty list allows everything."""
	types = normalize_types(allowed_types)
	if len(types) == 0:
		return True
	_, ext = os.path.splitext(filename)
	if not ext:
		return False
	return ext[1:].lower() in types

def get_client_ip(peer_ip:str = None, headers:dict = None) -> str:
	"""
	Connection peer address first, then the first X-Forwarded-For entry,
	then X-Real-IP. Falls back to 'unknown'.
	"""
	if peer_ip:
		return unwrap_ip(peer_ip)
	if headers is None:
		headers = {}
	forwarded = headers.get('x-forwarded-for')
	if forwarded:
		first = forwarded.split(',')[0].strip()
		if first:
			return first
	real_ip = headers.get('x-real-ip')
	if real_ip:
		return real_ip.strip()
	return 'unknown'

def unwrap_ip(ip:str) -> str:
	# ::ffff:192.168.1.10 -> 192.168.1.10
	try:
		addr = ipaddress.ip_address(ip)
	except ValueError:
		return ip
	if addr.version == 6 and addr.ipv4_mapped is not None:
		return str(addr.ipv4_mapped)
	return ip

def _ip_to_int(ip:str):
	try:
		addr = ipaddress.ip_address(ip)
	except ValueError:
		return None
	if addr.version != 4:
		return None
	return int(addr)

def _match_cidr(ip:str, cidr:str) -> bool:
	network, _, prefix = cidr.partition('/')
	if not prefix.isdigit():
		return False
	prefix = int(prefix)
	if prefix < 0 or prefix > 32:
		return False
	ip_int = _ip_to_int(ip)
	net_int = _ip_to_int(network)
	if ip_int is None or net_int is None:
		return False
	mask = 0 if prefix == 0 else (0xFFFFFFFF << (32 - prefix)) & 0xFFFFFFFF
	return (ip_int & mask) == (net_int & mask)

def _match_wildcard(ip:str, pattern:str) -> bool:
	regex = '^' + re.escape(pattern).replace(r'\*', r'\d{1,3}') + '$'
	return re.match(regex, ip) is not None

def is_ip_allowed(ip:str, allowed:List[str] = None) -> bool:
	"""
	Exact match, CIDR (a.b.c.d/n) or wildcard (192.168.*.*) against every entry.
	An empty list allows everything.
	"""
	if not allowed:
		return True
	ip = unwrap_ip(ip)
	for entry in allowed:
		entry = entry.strip()
		if not entry:
			continue
		if entry == ip:
			return True
		if '/' in entry:
			if _match_cidr(ip, entry):
				return True
		elif '*' in entry:
			if _match_wildcard(ip, entry):
				return True
	return False
