from qrdrop.config import QRDropConfig, load_config_file, load_env_vars, merge_config, validate_config, \
    normalize_values, get_config_path


def test_defaults():
    config = QRDropConfig()
    assert config.timeout == 600
    assert config.output == '.'
    assert config.rate_limit_window == 60
    assert config.is_secure is False
    assert validate_config(config) == []


def test_camel_case_keys_and_aliases():
    values = normalize_values({
        'keepAlive': True,
        'maxFileSize': 1024,
        'allowedTypes': ['jpg', 'png'],
        'path': '/drop',
        'rateLimitWindow': 30,
    })
    assert values == {
        'keep_alive': True,
        'max_file_size': 1024,
        'allow_types': ['jpg', 'png'],
        'url_path': '/drop',
        'rate_limit_window': 30,
    }


def test_env_vars():
    env = {
        'QRDROP_PORT': '8080',
        'QRDROP_SECURE': 'true',
        'QRDROP_ALLOW_IPS': '192.168.1.0/24, 10.0.0.1',
        'QRDROP_CONFIG': '/somewhere/config.toml',
        'HOME': '/root',
    }
    assert load_env_vars(env) == {
        'port': 8080,
        'secure': True,
        'allow_ips': ['192.168.1.0/24', '10.0.0.1'],
    }


def test_precedence():
    env = {'port': 1000, 'timeout': 10, 'verbose': True}
    file_config = {'port': 2000, 'timeout': 20}
    cli = {'port': 3000, 'timeout': None, 'verbose': None}
    config = merge_config(cli, file_config, env)
    assert config.port == 3000
    assert config.timeout == 20
    assert config.verbose is True


def test_config_file(tmp_path):
    path = tmp_path / 'config.toml'
    path.write_text('port = 9000\nsecure = true\nallowTypes = ["pdf"]\noutput = "/tmp/in"\n')
    values = load_config_file(str(path))
    assert values == {'port': 9000, 'secure': True, 'allow_types': ['pdf'], 'output': '/tmp/in'}


def test_missing_and_broken_config_files(tmp_path):
    assert load_config_file(str(tmp_path / 'missing.toml')) == {}
    broken = tmp_path / 'broken.toml'
    broken.write_text('port = [')
    assert load_config_file(str(broken)) == {}


def test_validation_errors():
    config = QRDropConfig().update({
        'port': 70000,
        'timeout': -1,
        'rate_limit': 0,
        'rate_limit_window': 0,
        'max_file_size': 0,
        'cert': 'cert.pem',
        'secure': 'maybe',
    })
    errors = validate_config(config)
    assert len(errors) == 7
    assert any('port' in e for e in errors)
    assert any('--cert and --key' in e for e in errors)


def test_uncoercible_env_value_is_reported():
    config = merge_config({}, {}, load_env_vars({'QRDROP_PORT': 'eighty'}))
    assert config.port == 'eighty'
    assert len(validate_config(config)) == 1


def test_share_paths_and_secure():
    config = QRDropConfig().update({'files': ['a.txt'], 'directory': 'photos', 'cert': 'c.pem', 'key': 'k.pem'})
    assert config.share_paths == ['a.txt', 'photos']
    assert config.is_secure is True


def test_config_path(monkeypatch, tmp_path):
    monkeypatch.setattr('sys.platform', 'linux')
    monkeypatch.setenv('XDG_CONFIG_HOME', str(tmp_path))
    assert get_config_path() == str(tmp_path / 'qrdrop' / 'config.toml')
    assert get_config_path('/custom.toml') == '/custom.toml'
