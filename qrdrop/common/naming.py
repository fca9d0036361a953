from typing import Callable, Iterator, Tuple, TypeVar

T = TypeVar('T')


def split_extension(name:str) -> Tuple[str, str]:
	"""
	Splits a filename into (base, extension). A leading dot does not start an
	extension, so '.bashrc' -> ('.bashrc', '') and '.env.local' -> ('.env', '.local').
	"""
	pos = name.rfind('.')
	if pos <= 0:
		return name, ''
	return name[:pos], name[pos:]

def candidate_names(name:str, max_attempts:int = None) -> Iterator[str]:
	"""
	Yields the name itself followed by base_1.ext, base_2.ext, ...
	At most max_attempts names are produced when max_attempts is set.
	"""
	base, ext = split_extension(name)
	counter = 0
	while max_attempts is None or counter < max_attempts:
		if counter == 0:
			yield name
		else:
			yield '%s_%d%s' % (base, counter, ext)
		counter += 1

def claim_first(candidates:Iterator[str], claim:Callable[[str], T]):
	"""
	Walks the candidates and returns (name, result) for the first one the
	claim function accepts. The claim function returns None or raises
	FileExistsError to reject a candidate. Returns (None, None) when every
	candidate was rejected.
	"""
	for candidate in candidates:
		try:
			result = claim(candidate)
		except FileExistsError:
			continue
		if result is not None:
			return candidate, result
	return None, None
