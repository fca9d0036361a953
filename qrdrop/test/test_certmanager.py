import os
import ssl
import stat
import datetime

import pytest
from cryptography import x509

from qrdrop.certmanager import CertManager
from qrdrop.errors import FatalConfigError


def test_generate_self_signed():
    cert_pem, key_pem, err = CertManager.generate_self_signed('192.168.1.5', days=30)
    assert err is None
    assert cert_pem.startswith(b'-----BEGIN CERTIFICATE-----')
    assert b'PRIVATE KEY' in key_pem

    cert = x509.load_pem_x509_certificate(cert_pem)
    san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert 'localhost' in san.get_values_for_type(x509.DNSName)
    assert [str(ip) for ip in san.get_values_for_type(x509.IPAddress)] == ['192.168.1.5', '127.0.0.1']


def test_ensure_certificate_generates_then_reuses(tmp_path):
    manager = CertManager(cert_dir=str(tmp_path), hostname='127.0.0.1')
    cert_file, key_file = manager.ensure_certificate()
    assert os.path.basename(cert_file) == 'qrdrop-cert.pem'
    assert os.path.basename(key_file) == 'qrdrop-key.pem'
    assert stat.S_IMODE(os.stat(key_file).st_mode) == 0o600
    assert 364 <= CertManager.days_until_expiry(cert_file) <= 365

    first = open(cert_file, 'rb').read()
    CertManager(cert_dir=str(tmp_path)).ensure_certificate()
    assert open(cert_file, 'rb').read() == first


def test_expired_certificate_is_regenerated(tmp_path):
    manager = CertManager(cert_dir=str(tmp_path))
    issued = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=2)
    cert_pem, key_pem, err = CertManager.generate_self_signed(days=1, now=issued)
    assert err is None
    (tmp_path / 'qrdrop-cert.pem').write_bytes(cert_pem)
    (tmp_path / 'qrdrop-key.pem').write_bytes(key_pem)
    assert CertManager.days_until_expiry(manager.cert_file) < 0

    manager.ensure_certificate()
    assert (tmp_path / 'qrdrop-cert.pem').read_bytes() != cert_pem
    assert CertManager.days_until_expiry(manager.cert_file) >= 364


def test_missing_custom_files(tmp_path):
    manager = CertManager(str(tmp_path / 'cert.pem'), str(tmp_path / 'key.pem'))
    with pytest.raises(FatalConfigError):
        manager.ensure_certificate()
    assert not (tmp_path / 'cert.pem').exists()


def test_ssl_context(tmp_path):
    ssl_ctx = CertManager(cert_dir=str(tmp_path)).get_ssl_context()
    assert isinstance(ssl_ctx, ssl.SSLContext)
    assert ssl_ctx.minimum_version == ssl.TLSVersion.TLSv1_2
