import os
import datetime
from typing import Dict, List

from qrdrop import logger
from qrdrop.constants import MIME_TYPES, DEFAULT_MIME_TYPE
from qrdrop.errors import FatalConfigError
from qrdrop.security import recursive_decode, validate_path, is_symlink, is_file_type_allowed
from qrdrop.common.naming import candidate_names, claim_first


def get_mime_type(filename:str) -> str:
	_, ext = os.path.splitext(filename)
	return MIME_TYPES.get(ext.lower(), DEFAULT_MIME_TYPE)


class ShareEntry:
	def __init__(self, name:str, path:str):
		self.name = name
		self.path = path

	def __repr__(self):
		return '<ShareEntry %s -> %s>' % (self.name, self.path)


class FileMetadata:
	def __init__(self, name:str, size:int, mime_type:str, modified_at:datetime.datetime):
		self.name = name
		self.size = size
		self.mime_type = mime_type
		self.modified_at = modified_at

	@staticmethod
	def from_path(name:str, path:str):
		st = os.stat(path)
		modified = datetime.datetime.fromtimestamp(st.st_mtime, datetime.timezone.utc)
		return FileMetadata(name, st.st_size, get_mime_type(name), modified)

	def to_dict(self):
		return {
			'name' : self.name,
			'size' : self.size,
			'type' : self.mime_type,
			'modified' : self.modified_at.isoformat().replace('+00:00', 'Z'),
		}


class FileCatalog:
	"""
	Name -> path index of the shared files, built once and never mutated afterwards.
	Directories contribute their top-level regular files. On a name collision
	the first share root wins.
	"""
	def __init__(self, share_paths:List[str]):
		self.share_paths = [os.path.abspath(p) for p in share_paths]
		self.entries:Dict[str, ShareEntry] = {}
		self._lower:Dict[str, ShareEntry] = {}
		self.build()

	@staticmethod
	def validate_share_paths(share_paths:List[str]):
		"""Every share path must exist. Raises FatalConfigError otherwise."""
		for path in share_paths:
			if not os.path.exists(path):
				raise FatalConfigError('Path does not exist: %s' % path)
			if is_symlink(path):
				raise FatalConfigError('Symlinks cannot be shared: %s' % path)

	def _iter_root(self, root:str):
		if os.path.isfile(root):
			yield os.path.basename(root), root
			return
		if not os.path.isdir(root):
			return
		with os.scandir(root) as it:
			for entry in sorted(it, key=lambda e: e.name):
				if entry.is_symlink():
					continue
				if entry.is_file(follow_symlinks=False):
					yield entry.name, entry.path

	def _add(self, name:str, path:str):
		def claim(candidate):
			if candidate in self.entries:
				return None
			return ShareEntry(candidate, path)
		# first wins, only the bare name is a candidate
		_, entry = claim_first(candidate_names(name, 1), claim)
		if entry is None:
			logger.debug('Duplicate name %s ignored (%s)' % (name, path))
			return
		self.entries[name] = entry
		self._lower.setdefault(name.lower(), entry)

	def build(self):
		for root in self.share_paths:
			if is_symlink(root):
				logger.warning('Skipping symlinked share path %s' % root)
				continue
			try:
				for name, path in self._iter_root(root):
					self._add(name, path)
			except OSError as e:
				logger.warning('Could not read %s: %s' % (root, e))

	def __len__(self):
		return len(self.entries)

	def __contains__(self, name):
		return name in self.entries

	def names(self):
		return list(self.entries.keys())

	def paths(self):
		return [e.path for e in self.entries.values()]

	def lookup(self, name:str):
		"""Exact name first, then case-insensitive. Returns the path or None."""
		entry = self.entries.get(name)
		if entry is None:
			entry = self._lower.get(name.lower())
		if entry is None:
			return None
		return entry.path

	def find_on_disk(self, name:str):
		"""
		Last resort lookup directly on the filesystem, for files that appeared
		after the catalog was built. Only top-level entries of a shared
		directory qualify, like in the catalog itself. A symlink is returned
		unresolved so the caller can refuse it.
		"""
		name = recursive_decode(name)
		if name in ('', '.', '..') or '/' in name or '\\' in name or '\x00' in name:
			return None
		for root in self.share_paths:
			if os.path.isdir(root):
				candidate = os.path.join(root, name)
				if is_symlink(candidate):
					return candidate
				path = validate_path(name, root)
				if path is not None and os.path.isfile(path) and os.path.dirname(path) == os.path.realpath(root):
					return path
			elif os.path.basename(root) == name and os.path.isfile(root):
				return root
		return None

	def resolve(self, name:str):
		path = self.lookup(name)
		if path is None:
			path = self.find_on_disk(name)
		return path

	def list_files(self, allowed_types:List[str] = None) -> List[FileMetadata]:
		result = []
		for name, entry in self.entries.items():
			if not is_file_type_allowed(name, allowed_types):
				continue
			try:
				result.append(FileMetadata.from_path(name, entry.path))
			except OSError as e:
				# removed since start-up
				logger.debug('Cannot stat %s: %s' % (entry.path, e))
		result.sort(key=lambda m: m.name)
		return result
