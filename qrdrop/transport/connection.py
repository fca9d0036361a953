import asyncio

from qrdrop.constants import UPLOAD_CHUNK_SIZE


class StreamConnection:
	def __init__(self, reader:asyncio.StreamReader, writer:asyncio.StreamWriter, buffer_size:int = UPLOAD_CHUNK_SIZE):
		self.reader = reader
		self.writer = writer
		self.buffer_size = buffer_size
		self.closing = False
		self.closed_evt = asyncio.Event()

	async def __aenter__(self):
		return self

	async def __aexit__(self, exc_type, exc, tb):
		await self.close()

	def get_extra_info(self, name, default=None):
		return self.writer.get_extra_info(name, default)

	def get_peer_ip(self):
		peername = self.get_extra_info('peername')
		if not peername:
			return None
		return peername[0]

	async def close(self):
		if self.closing is True:
			return
		self.closing = True
		try:
			self.writer.close()
			await self.writer.wait_closed()
		except (ConnectionError, OSError):
			# peer went away first
			pass
		finally:
			self.closed_evt.set()

	async def write(self, data:bytes):
		self.writer.write(data)
		await self.writer.drain()

	async def read_one(self) -> bytes:
		"""Returns whatever is available up to buffer_size, b'' on EOF."""
		if self.closing is True:
			return b''
		return await self.reader.read(self.buffer_size)
