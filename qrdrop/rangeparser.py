from typing import List

from qrdrop.constants import MAX_RANGES


class ByteRange:
	"""Inclusive byte interval, 0 <= start <= end < size"""
	def __init__(self, start:int, end:int):
		self.start = start
		self.end = end

	@property
	def length(self):
		return self.end - self.start + 1

	def content_range(self, size:int) -> str:
		return 'bytes %d-%d/%d' % (self.start, self.end, size)

	def __eq__(self, other):
		if not isinstance(other, ByteRange):
			return NotImplemented
		return self.start == other.start and self.end == other.end

	def __repr__(self):
		return 'ByteRange(%d, %d)' % (self.start, self.end)

def _parse_number(value:str):
	value = value.strip()
	if not value.isascii() or not value.isdigit():
		return None
	return int(value)

def _parse_spec(spec:str, file_size:int):
	spec = spec.strip()
	if '-' not in spec:
		return None
	start_txt, end_txt = spec.split('-', 1)
	start_txt = start_txt.strip()
	end_txt = end_txt.strip()

	if start_txt == '':
		# suffix: last N bytes
		length = _parse_number(end_txt)
		if length is None or length <= 0:
			return None
		start = max(0, file_size - length)
		end = file_size - 1
	elif end_txt == '':
		start = _parse_number(start_txt)
		if start is None:
			return None
		end = file_size - 1
	else:
		start = _parse_number(start_txt)
		end = _parse_number(end_txt)
		if start is None or end is None:
			return None
		if end < start or end >= file_size:
			return None

	start = max(0, min(start, file_size - 1))
	end = max(start, min(end, file_size - 1))
	return ByteRange(start, end)

def parse_range_header(header:str, file_size:int, max_ranges:int = MAX_RANGES) -> List[ByteRange]:
	"""
	Parses a Range header against a known content length.

	Args:
		header (str): raw header value, may be None
		file_size (int): size of the served content
		max_ranges (int): more comma separated specs than this rejects the whole header

	Returns:
		list or None: parsed ranges in request order, None means "serve the full content"
	"""
	if not header or file_size <= 0:
		return None
	header = header.strip()
	if not header.startswith('bytes='):
		return None

	specs = header[len('bytes='):].split(',')
	if len(specs) > max_ranges:
		return None

	ranges = []
	for spec in specs:
		byte_range = _parse_spec(spec, file_size)
		if byte_range is not None:
			ranges.append(byte_range)

	if len(ranges) == 0:
		return None
	return ranges
