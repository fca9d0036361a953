
__version__ = "0.3.1"
__banner__ = \
"""
# qrdrop %s 
# share files on the local network, scan and go
""" % __version__
