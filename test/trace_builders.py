"""Builders for raw node responses used across the tests."""

ALICE = '0x' + '11' * 20
TOKEN = '0x' + '22' * 20
VAULT = '0x' + '33' * 20
ORACLE = '0x' + '44' * 20


def frame(type_='CALL', from_=ALICE, to=TOKEN, input_='0x', output='0x', calls=None, **extra):
    """Raw callTracer-style frame."""
    raw = {
        'type': type_,
        'from': from_,
        'to': to,
        'gas': '0x5208',
        'gasUsed': '0x100',
        'input': input_,
        'output': output,
        'calls': calls or [],
    }
    raw.update(extra)
    return raw
