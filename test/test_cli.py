import json
import logging
import os
import time

import pytest

from soltrace.cli.main import build_parser, main
from soltrace.scratch import ScratchSpace
from soltrace.utils.logging import ROOT_LOGGER_NAME


@pytest.fixture(autouse=True)
def restore_logging():
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    scratch = tmp_path / 'scratch'
    path = tmp_path / 'soltrace.config.yaml'
    path.write_text(f"scratch_root: {scratch}\nsweep_max_age: 120\n")
    return path, ScratchSpace(scratch)


def test_parser_reads_request_options():
    args = build_parser().parse_args([
        'trace', '--rpc', 'http://node', '--to', '0x' + '22' * 20,
        '--from', '0x' + '11' * 20, '--calldata', '0xa9059cbb', '--block', '12', '--json',
    ])
    assert args.command == 'trace'
    assert args.tx_hash is None
    assert args.from_addr == '0x' + '11' * 20
    assert args.block == 12
    assert args.json


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_cleanup_uses_configured_max_age(config_file, capsys):
    path, scratch = config_file
    stale = scratch.create_run_dir()
    recent = scratch.create_run_dir()
    old = time.time() - 600
    os.utime(stale, (old, old))

    assert main(['cleanup', '--config', str(path), '--json']) == 0

    output = json.loads(capsys.readouterr().out)
    assert output == {'removed': 1, 'directories': [stale.name]}
    assert recent.exists()


def test_cleanup_max_age_flag(config_file, capsys):
    path, scratch = config_file
    run_dir = scratch.create_run_dir()
    old = time.time() - 30
    os.utime(run_dir, (old, old))

    assert main(['cleanup', '--config', str(path), '--max-age', '10', '--quiet']) == 0
    assert 'Removed 1 stale run directories' in capsys.readouterr().out
    assert not run_dir.exists()


def test_invalid_request_reports_json_error(config_file, capsys):
    path, _ = config_file
    code = main(['simulate', '--config', str(path), '--rpc', 'http://node', '--to', '0x' + '22' * 20, '--json'])

    assert code == 1
    output = json.loads(capsys.readouterr().out)
    assert output['error'] is True
    assert output['type'] == 'INVALID_REQUEST'
