import json

import pytest

from soltrace.parsers import (
    ETHDebugParser,
    LineIndex,
    SourceMapParser,
    build_pc_to_instruction_map,
    load_debug_info,
    offset_to_code_location,
    parse_source_mapping,
    parse_srcmap,
)

from solc_fakes import instruction, write_ethdebug_output

SOURCE = 'pragma solidity ^0.8.30;\ncontract Token {\n    uint256 public total;\n}\n'


# -- locations ----------------------------------------------------------------

def test_line_index_is_one_based():
    index = LineIndex('ab\ncd\n')
    assert index.position(0).to_dict() == {'line': 1, 'col': 1}
    assert index.position(3).to_dict() == {'line': 2, 'col': 1}
    assert index.position(4).to_dict() == {'line': 2, 'col': 2}
    assert index.position(999).line == 3


def test_offsets_count_utf8_bytes():
    source = '// é\nx'
    # 'é' is two bytes, so 'x' starts at byte 6
    location = offset_to_code_location(source, 6, 1, 'A.sol')
    assert location.to_dict() == {
        'start': {'line': 2, 'col': 1},
        'end': {'line': 2, 'col': 2},
        'filePath': 'A.sol',
    }


def test_parse_source_mapping():
    assert parse_source_mapping('26:56:0') == (26, 56, 0)
    assert parse_source_mapping('26:56:0:i:0') == (26, 56, 0)
    assert parse_source_mapping('0:0:-1') is None
    assert parse_source_mapping('garbage') is None


# -- ethdebug -----------------------------------------------------------------

@pytest.fixture
def ethdebug_dir(tmp_path):
    root = tmp_path / 'ethdebug'
    (root / 'src').mkdir(parents=True)
    (root / 'src' / 'Token.sol').write_text(SOURCE)
    debug_dir = root / 'debug'
    write_ethdebug_output(debug_dir, 'src/Token.sol', 'Token', [
        instruction(0, 0, 24),
        instruction(2, 25, 57),
        {'offset': 4, 'operation': {'mnemonic': 'STOP'}},
    ], abi=[{'type': 'function', 'name': 'total', 'inputs': [], 'outputs': []}])
    return debug_dir


def test_ethdebug_parser_maps_pcs(ethdebug_dir):
    contract = ETHDebugParser(ethdebug_dir).load('Token')

    assert contract.name == 'Token'
    assert contract.pc_to_source_mappings == {0: '0:24:0', 2: '25:57:0'}
    assert contract.source_paths == {0: 'src/Token.sol'}
    assert contract.abi[0]['name'] == 'total'
    assert contract.location_at(4) is None
    location = contract.location_at(2)
    assert location.file_path == 'src/Token.sol'
    assert location.start.line == 2
    assert contract.source_code() == {'src/Token.sol': SOURCE}


def test_ethdebug_parser_falls_back_to_only_runtime_program(ethdebug_dir):
    assert ETHDebugParser(ethdebug_dir).load('Unknown').pc_to_source_mappings[0] == '0:24:0'


def test_ethdebug_parser_refuses_to_guess_between_programs(ethdebug_dir):
    write_ethdebug_output(ethdebug_dir, 'src/Token.sol', 'Address', [instruction(0, 999, 1)])
    with pytest.raises(FileNotFoundError):
        ETHDebugParser(ethdebug_dir).load('Unknown')
    assert ETHDebugParser(ethdebug_dir).load('Token').pc_to_source_mappings[0] == '0:24:0'


def test_ethdebug_parser_requires_ethdebug_json(tmp_path):
    with pytest.raises(FileNotFoundError):
        ETHDebugParser(tmp_path).load('Token')


def test_ethdebug_missing_source_text_yields_no_location(ethdebug_dir):
    (ethdebug_dir.parent / 'src' / 'Token.sol').unlink()
    contract = ETHDebugParser(ethdebug_dir).load('Token')
    assert contract.sources == {}
    assert contract.location_at(0) is None


# -- legacy source maps -------------------------------------------------------

def test_build_pc_to_instruction_map_skips_push_data():
    # PUSH1 0x80, PUSH2 0x0102, STOP
    assert build_pc_to_instruction_map(bytes.fromhex('6080610102' + '00')) == {0: 0, 2: 1, 5: 2}


def test_parse_srcmap_inherits_empty_fields():
    entries = parse_srcmap('0:10:0:-:0;;5:2;:::i')
    assert [(e.offset, e.length, e.file_index) for e in entries] == [(0, 10, 0), (0, 10, 0), (5, 2, 0), (5, 2, 0)]
    assert entries[3].jump_type == 'i'
    assert parse_srcmap('') == []


@pytest.fixture
def legacy_dir(tmp_path):
    root = tmp_path / 'legacy'
    root.mkdir()
    (root / 'Token.sol').write_text(SOURCE)
    debug_dir = root / 'debug'
    debug_dir.mkdir()
    (debug_dir / 'combined.json').write_text(json.dumps({
        'contracts': {
            'Token.sol:Math': {'bin-runtime': '', 'srcmap-runtime': ''},
            'Token.sol:Token': {
                'bin-runtime': '608061010200',
                'srcmap-runtime': '0:24:0:-:0;25:57:0;-1:-1:-1',
                'abi': '[]',
            },
        },
        'sourceList': ['Token.sol'],
    }))
    return debug_dir


def test_source_map_parser(legacy_dir):
    contract = SourceMapParser(legacy_dir).load('Token')
    assert contract.name == 'Token'
    assert contract.pc_to_source_mappings == {0: '0:24:0', 2: '25:57:0'}
    assert contract.abi == []
    assert contract.location_at(2).start.line == 2


def test_load_debug_info_picks_format(ethdebug_dir, legacy_dir, tmp_path):
    assert load_debug_info(ethdebug_dir, 'Token').pc_to_source_mappings[2] == '25:57:0'
    assert load_debug_info(legacy_dir, 'Token').pc_to_source_mappings[2] == '25:57:0'
    with pytest.raises(FileNotFoundError):
        load_debug_info(tmp_path / 'nothing')


def test_source_map_parser_refuses_to_guess_between_contracts(legacy_dir):
    combined_file = legacy_dir / 'combined.json'
    data = json.loads(combined_file.read_text())
    data['contracts']['Token.sol:Address'] = {'bin-runtime': '6000', 'srcmap-runtime': '0:1:0', 'abi': '[]'}
    combined_file.write_text(json.dumps(data))

    with pytest.raises(ValueError):
        SourceMapParser(legacy_dir).load('Unknown')
    assert SourceMapParser(legacy_dir).load('Token').pc_to_source_mappings[2] == '25:57:0'
