import asyncio

from qrdrop.transport.target import ServerTarget, ServerProto
from qrdrop.transport.connection import StreamConnection
from qrdrop import logger


class StreamServer:
	"""Listens on the target and hands out accepted connections through serve()."""
	def __init__(self, target:ServerTarget):
		self.target = target
		self.connection_queue = asyncio.Queue()
		self.listening_evt = asyncio.Event()
		self.server = None

	async def __handle_connection(self, reader, writer):
		connection = StreamConnection(reader, writer)
		await self.connection_queue.put(connection)

	async def listen(self):
		if self.server is not None:
			return self.server
		if self.target.protocol not in [ServerProto.TCP, ServerProto.SSL_TCP]:
			raise Exception('Unknown protocol "%s"' % self.target.protocol)

		self.server = await asyncio.start_server(
			self.__handle_connection, 
			self.target.get_ip_or_hostname(), 
			self.target.port,
			ssl = self.target.get_ssl_context(),
		)
		self.listening_evt.set()
		logger.debug('Listening on %s:%s' % (self.target.get_ip_or_hostname(), self.bound_port()))
		return self.server

	def bound_port(self):
		"""The port actually bound, differs from target.port when that is 0."""
		if self.server is None or not self.server.sockets:
			return self.target.port
		return self.server.sockets[0].getsockname()[1]

	async def serve(self):
		try:
			await self.listen()
			while self.server.is_serving():
				connection = await self.connection_queue.get()
				yield connection
		finally:
			self.close()

	def close(self):
		if self.server is not None:
			self.server.close()
