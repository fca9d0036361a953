import os
import time
import asyncio
import shutil
import zipfile
import tempfile
from typing import Dict, List

from qrdrop import logger
from qrdrop.security import is_symlink


def _iter_archive_members(paths:List[str]):
	"""Yields (filesystem path, archive name) pairs. Symlinks are never followed."""
	for path in paths:
		path = os.path.abspath(path)
		if is_symlink(path):
			continue
		if os.path.isfile(path):
			yield path, os.path.basename(path)
		elif os.path.isdir(path):
			parent = os.path.dirname(path)
			for root, dirs, files in os.walk(path):
				dirs[:] = sorted(d for d in dirs if not os.path.islink(os.path.join(root, d)))
				for name in sorted(files):
					file_path = os.path.join(root, name)
					if os.path.islink(file_path):
						continue
					yield file_path, os.path.relpath(file_path, parent).replace(os.sep, '/')

def create_archive(paths:List[str], output_dir:str = None):
	"""
	Zips the given files and directories into a new temporary file.

	Returns:
		tuple: (archive_path, None) on success, (None, exception) on failure
	"""
	fd = None
	archive_path = None
	try:
		fd, archive_path = tempfile.mkstemp(prefix='qrdrop-', suffix='.zip', dir=output_dir)
		with os.fdopen(fd, 'wb') as f:
			fd = None
			with zipfile.ZipFile(f, 'w', zipfile.ZIP_DEFLATED, compresslevel=6) as zf:
				seen = set()
				for file_path, arcname in _iter_archive_members(paths):
					if arcname in seen:
						logger.debug('Duplicate archive member %s skipped' % arcname)
						continue
					seen.add(arcname)
					zf.write(file_path, arcname)
		return archive_path, None
	except Exception as e:
		if fd is not None:
			os.close(fd)
		if archive_path is not None and os.path.exists(archive_path):
			os.unlink(archive_path)
		return None, e

async def create_archive_async(paths:List[str], output_dir:str = None):
	"""create_archive in the default executor, the event loop keeps serving meanwhile"""
	loop = asyncio.get_running_loop()
	return await loop.run_in_executor(None, create_archive, paths, output_dir)


class PendingArtifacts:
	"""Temporary files and directories owned by one server instance, removed after use or on shutdown."""
	def __init__(self):
		self.artifacts:Dict[str, float] = {}
		self.cleanup_tasks = set()

	def add(self, path:str):
		self.artifacts[path] = time.time()

	def __contains__(self, path):
		return path in self.artifacts

	def __len__(self):
		return len(self.artifacts)

	def discard(self, path:str):
		"""Deletes the artifact and forgets it. Missing files are not an error."""
		self.artifacts.pop(path, None)
		try:
			if os.path.isdir(path) and not os.path.islink(path):
				shutil.rmtree(path)
			else:
				os.unlink(path)
			logger.debug('Removed temporary artifact %s' % path)
		except FileNotFoundError:
			pass
		except OSError as e:
			logger.warning('Could not remove temporary artifact %s: %s' % (path, e))

	async def _discard_later(self, path:str, delay:float):
		await asyncio.sleep(delay)
		self.discard(path)

	def cleanup_later(self, path:str, delay:float):
		task = asyncio.create_task(self._discard_later(path, delay))
		self.cleanup_tasks.add(task)
		task.add_done_callback(self.cleanup_tasks.discard)
		return task

	def remove_all(self):
		"""Deletes every tracked artifact. Safe to call without a running event loop."""
		for path in list(self.artifacts.keys()):
			self.discard(path)

	def cleanup_all(self):
		for task in list(self.cleanup_tasks):
			task.cancel()
		self.cleanup_tasks.clear()
		self.remove_all()
