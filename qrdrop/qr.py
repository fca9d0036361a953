import io

import qrcode

from qrdrop import logger


def render_qr(data:str, invert:bool = True):
	"""
	Returns:
		tuple: (ascii_art, None) or (None, exception)
	"""
	try:
		qr = qrcode.QRCode(border=1)
		qr.add_data(data)
		qr.make(fit=True)
		out = io.StringIO()
		qr.print_ascii(out=out, invert=invert)
		return out.getvalue(), None
	except Exception as e:
		return None, e

def print_qr(url:str):
	art, err = render_qr(url)
	if err is not None:
		logger.debug('QR rendering failed: %s' % err)
	else:
		print(art)
	print(url)
