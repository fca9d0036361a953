import logging

from qrdrop import logger
from qrdrop.cli import build_parser, args_to_dict, setup_logging
from qrdrop.config import merge_config


def test_positional_and_repeated_files():
    args = build_parser().parse_args(['a.txt', '-f', 'b.txt', '-f', 'c.txt', '-o', 'in'])
    values = args_to_dict(args)
    assert values['files'] == ['a.txt', 'b.txt', 'c.txt']
    assert values['output'] == 'in'
    assert 'config' not in values


def test_unset_flags_do_not_override_lower_layers():
    args = build_parser().parse_args([])
    config = merge_config(args_to_dict(args), {'secure': True, 'port': 9000}, {})
    assert config.secure is True
    assert config.port == 9000
    assert config.files == []


def test_comma_separated_options():
    args = build_parser().parse_args(['--allow-ips', '192.168.1.0/24, 10.0.0.1', '--allow-types', 'jpg,png'])
    values = args_to_dict(args)
    assert values['allow_ips'] == ['192.168.1.0/24', '10.0.0.1']
    assert values['allow_types'] == ['jpg', 'png']


def test_setup_logging_levels(tmp_path):
    original = logger.level
    try:
        config = merge_config({'verbose': True}, {}, {})
        setup_logging(config)
        assert logger.level == logging.INFO

        config = merge_config({'debug': True, 'log_file': str(tmp_path / 'qrdrop.log')}, {}, {})
        setup_logging(config)
        assert logger.level == logging.DEBUG
        handler = logger.handlers[-1]
        assert isinstance(handler, logging.FileHandler)
        logger.removeHandler(handler)
        handler.close()
    finally:
        logger.setLevel(original)
