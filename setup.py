from setuptools import setup, find_packages
import re

VERSIONFILE="qrdrop/_version.py"
verstrline = open(VERSIONFILE, "rt").read()
VSRE = r"^__version__ = ['\"]([^'\"]*)['\"]"
mo = re.search(VSRE, verstrline, re.M)
if mo:
    verstr = mo.group(1)
else:
    raise RuntimeError("Unable to find version string in %s." % (VERSIONFILE,))


setup(
	# Application name:
	name="qrdrop",

	# Version number (initial):
	version=verstr,

	# Packages
	packages=find_packages(exclude=["qrdrop.test", "qrdrop.test.*"]),

	# Include additional files into the package
	include_package_data=True,

	zip_safe = True,
	#
	# license="LICENSE.txt",
	description="Share files on the local network over HTTP(S), with a QR code for the URL",
	long_description="",

	python_requires='>=3.11',
	classifiers=[
		"Programming Language :: Python :: 3.11",
		"License :: OSI Approved :: MIT License",
		"Operating System :: OS Independent",
	],
	install_requires=[
		'cryptography>=42.0.0',
		'h11>=0.14.0',
		'qrcode>=7.0',
	],
	extras_require={
		'test': [
			'pytest',
			'pytest-asyncio',
		],
	},
	entry_points={
		'console_scripts': [
			'qrdrop = qrdrop.cli:main',
		],
	}
)
