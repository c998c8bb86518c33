"""Helpers for building CC archives in memory."""

import struct

import pytest

from xeencc_unpack import HEADER_SIZE, TOC_ENTRY_SIZE, encrypt_toc, xor_data


def pack_toc(records):
    """Plain (decrypted) TOC bytes for (file_id, offset, length[, padding]) records"""
    toc = b''
    for record in records:
        file_id, offset, length = record[:3]
        padding = record[3] if len(record) > 3 else 0
        toc += struct.pack('<H', file_id) + struct.pack('<I', offset)[:3]
        toc += struct.pack('<HB', length, padding)
    return toc


def assemble(records, payload_region=b''):
    """Header + encrypted TOC + payload region"""
    return struct.pack('<H', len(records)) + encrypt_toc(pack_toc(records)) + payload_region


@pytest.fixture
def build_archive():
    """Return a function turning [(file_id, plain bytes), ...] into a valid archive"""
    def build(files):
        data_start = HEADER_SIZE + len(files) * TOC_ENTRY_SIZE
        records = []
        payload = b''
        for file_id, content in files:
            records.append((file_id, data_start + len(payload), len(content)))
            payload += xor_data(content)
        return assemble(records, payload)
    return build


@pytest.fixture
def write_archive(tmp_path, build_archive):
    """Write an archive built from files into tmp_path under the given name"""
    def write(name, files):
        path = tmp_path / name
        path.write_bytes(build_archive(files))
        return path
    return write
