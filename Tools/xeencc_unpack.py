#!/usr/bin/env python3
"""
World of Xeen CC Archive Unpacker

Extracts files from World of Xeen CC archives.

Layout (little-endian):
    u16 file_count
    file_count * 8 bytes of encrypted table of contents
    member payloads, located by absolute offsets from the TOC

Each decrypted TOC record is ``u16 id | u24 offset | u16 length | u8 padding``
where the padding byte must decrypt to zero. Member payloads are XOR-encoded
with 0x35.
"""

import argparse
import concurrent.futures
import json
import logging
import struct
import sys
from pathlib import Path
from typing import Callable, Iterable, List, Mapping, NamedTuple, Optional, Tuple

import numpy as np

from xeen_filename_mapper import (
    GameType,
    identify_game,
    load_manual_mappings,
    resolve_file_name,
)

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s', stream=sys.stdout)
logger = logging.getLogger(__name__)

HEADER_SIZE = 2
TOC_ENTRY_SIZE = 8
TOC_SEED = 0xAC
TOC_SEED_STEP = 0x67
MEMBER_XOR_KEY = 0x35


class CCArchiveError(ValueError):
    """Archive is not a readable CC file"""


class TocReadError(CCArchiveError):
    """Header or table of contents is truncated"""


class TocDecryptError(CCArchiveError):
    """Table of contents did not decrypt to valid records"""

    def __init__(self, entry_index: int, padding_byte: int):
        super().__init__(
            f"Decryption failed: entry {entry_index} has padding byte "
            f"0x{padding_byte:02X} (expected 0x00)")
        self.entry_index = entry_index
        self.padding_byte = padding_byte


class MemberReadError(CCArchiveError):
    """A TOC entry points outside the archive"""


class TocEntry(NamedTuple):
    index: int
    file_id: int
    file_offset: int
    file_length: int
    padding_byte: int
    file_name: str


class Member(NamedTuple):
    file_name: str
    data: bytes


def _toc_key(length: int) -> np.ndarray:
    """Running counter bytes: 0xAC, 0xAC + 0x67, ... (mod 256)"""
    counter = TOC_SEED + TOC_SEED_STEP * np.arange(length, dtype=np.uint32)
    return (counter & 0xFF).astype(np.uint8)


def decrypt_toc(data: bytes) -> bytes:
    """
    Decrypt the CC archive index.

    Every byte is rotated left by two bits and added to a counter that starts
    at 0xAC and advances by 0x67 per byte, both modulo 256.

    Args:
        data: Encrypted index data

    Returns:
        Decrypted index data
    """
    if not data:
        return b''
    encrypted = np.frombuffer(data, dtype=np.uint8)
    rotated = (encrypted << 2) | (encrypted >> 6)
    return (rotated + _toc_key(len(encrypted))).tobytes()


def encrypt_toc(data: bytes) -> bytes:
    """Inverse of decrypt_toc: subtract the counter, then rotate right by two bits"""
    if not data:
        return b''
    plain = np.frombuffer(data, dtype=np.uint8)
    shifted = plain - _toc_key(len(plain))
    return ((shifted >> 2) | (shifted << 6)).tobytes()


def find_bad_padding(decrypted: bytes) -> Optional[int]:
    """Return the index of the first record whose padding byte is non-zero"""
    if not decrypted:
        return None
    padding = np.frombuffer(decrypted, dtype=np.uint8)[TOC_ENTRY_SIZE - 1::TOC_ENTRY_SIZE]
    bad = np.flatnonzero(padding)
    return int(bad[0]) if bad.size else None


def verify_decrypt(decrypted: bytes) -> bool:
    """Check that every 8th byte of the decrypted index is zero"""
    return find_bad_padding(decrypted) is None


def parse_toc(decrypted: bytes, file_count: int, game: GameType,
              overrides: Optional[Mapping[int, str]] = None) -> List[TocEntry]:
    """
    Parse already decrypted and verified index records.

    Args:
        decrypted: Decrypted index data, at least file_count * 8 bytes
        file_count: Number of records
        game: Game variant used to resolve file names
        overrides: Optional user filename mappings

    Returns:
        List of TocEntry in archive order
    """
    entries = []
    for i in range(file_count):
        offset = i * TOC_ENTRY_SIZE
        entry_data = decrypted[offset:offset + TOC_ENTRY_SIZE]

        # ID (2 bytes) + offset (3 bytes) + size (2 bytes) + padding (1 byte)
        file_id = struct.unpack('<H', entry_data[0:2])[0]
        file_offset = struct.unpack('<I', entry_data[2:5] + b'\x00')[0]
        file_length = struct.unpack('<H', entry_data[5:7])[0]

        entries.append(TocEntry(
            index=i,
            file_id=file_id,
            file_offset=file_offset,
            file_length=file_length,
            padding_byte=entry_data[7],
            file_name=resolve_file_name(file_id, game, overrides),
        ))

    return entries


def decode_toc(toc: bytes, file_count: int, game: GameType,
               overrides: Optional[Mapping[int, str]] = None) -> List[TocEntry]:
    """
    Decrypt, verify and parse the table of contents.

    Raises:
        TocReadError: toc holds fewer than file_count * 8 bytes
        TocDecryptError: a record's padding byte is not zero after decryption
    """
    expected = file_count * TOC_ENTRY_SIZE
    if len(toc) < expected:
        raise TocReadError(f"Failed to read index data: expected {expected} bytes, got {len(toc)}")

    decrypted = decrypt_toc(toc[:expected])
    bad_entry = find_bad_padding(decrypted)
    if bad_entry is not None:
        raise TocDecryptError(bad_entry, decrypted[bad_entry * TOC_ENTRY_SIZE + TOC_ENTRY_SIZE - 1])

    logger.info("Decryption successful.")
    return parse_toc(decrypted, file_count, game, overrides)


def read_archive(filepath) -> bytes:
    """Read a whole CC archive into memory"""
    with open(filepath, 'rb') as f:
        return f.read()


def read_header(buffer: bytes) -> Tuple[int, bytes]:
    """
    Split the file count and encrypted index off the start of an archive.

    Returns:
        Tuple of (file count, encrypted index bytes)
    """
    if len(buffer) < HEADER_SIZE:
        raise TocReadError(f"Archive too small for header: {len(buffer)} bytes")

    file_count = struct.unpack_from('<H', buffer, 0)[0]
    toc_end = HEADER_SIZE + file_count * TOC_ENTRY_SIZE
    toc = buffer[HEADER_SIZE:toc_end]
    if len(toc) != file_count * TOC_ENTRY_SIZE:
        raise TocReadError(
            f"Failed to read index data: expected {file_count * TOC_ENTRY_SIZE} bytes, got {len(toc)}")

    return file_count, toc


def extract_member(buffer: bytes, entry: TocEntry) -> Member:
    """
    Slice one member's bytes out of the archive.

    Offsets are absolute positions in the archive buffer.

    Raises:
        MemberReadError: The entry reaches past the end of the archive
    """
    start = entry.file_offset
    end = start + entry.file_length

    if start > len(buffer):
        raise MemberReadError(f"Entry offset {start} beyond archive size {len(buffer)}")
    if end > len(buffer):
        raise MemberReadError(
            f"Cannot read {entry.file_length} bytes from position {start} "
            f"(archive size {len(buffer)})")

    return Member(entry.file_name, bytes(buffer[start:end]))


def xor_data(data: bytes, key: int = MEMBER_XOR_KEY) -> bytes:
    if not data:
        return b''
    return (np.frombuffer(data, dtype=np.uint8) ^ np.uint8(key)).tobytes()


def decrypt_member(member: Member) -> Member:
    """Undo the 0x35 XOR applied to member payloads"""
    return member._replace(data=xor_data(member.data))


# XOR is its own inverse
encrypt_member = decrypt_member


def _map_in_order(func: Callable, items: Iterable, workers: int = 1) -> list:
    """Apply func to every item, on a thread pool when workers > 1, keeping input order"""
    if workers <= 1:
        return [func(item) for item in items]

    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(func, items))


def extract_members(buffer: bytes, entries: Iterable[TocEntry], workers: int = 1) -> List[Member]:
    """
    Extract every TOC entry from the archive buffer.

    Entries that point outside the archive are logged and skipped; the rest
    are still extracted.
    """
    def extract(entry: TocEntry) -> Optional[Member]:
        try:
            return extract_member(buffer, entry)
        except MemberReadError as e:
            logger.warning(f"Skipping entry {entry.index} ({entry.file_id:04X} {entry.file_name}): {e}")
            return None

    return [m for m in _map_in_order(extract, entries, workers) if m is not None]


def decrypt_members(members: Iterable[Member], workers: int = 1) -> List[Member]:
    return _map_in_order(decrypt_member, members, workers)


def setup_extract_location(archive_path, output=None) -> Path:
    """
    Pick and create the extraction directory.

    Defaults to ``<archive stem>_extracted`` next to the archive. An existing
    directory is reused. If it cannot be created the error is logged and the
    path is returned anyway; member writes will then report their own errors.
    """
    archive_path = Path(archive_path)
    if output is not None:
        extract_dir = Path(output)
    else:
        extract_dir = archive_path.with_name(f"{archive_path.stem}_extracted")

    if extract_dir.is_dir():
        logger.info(f"Using existing folder: {extract_dir}")
        return extract_dir

    try:
        extract_dir.mkdir(parents=True)
        logger.info(f"Created folder: {extract_dir}")
    except OSError as e:
        logger.error(f"There was an error while attempting to create the extraction folder: {e}")

    return extract_dir


def write_members(members: Iterable[Member], output_dir) -> int:
    """
    Write each member to output_dir under its resolved name.

    Failures are logged per member and do not stop the remaining writes.

    Returns:
        Number of members written
    """
    output_dir = Path(output_dir)
    written = 0

    for member in members:
        output_path = output_dir / member.file_name
        try:
            with open(output_path, 'wb') as f:
                f.write(member.data)
        except OSError as e:
            logger.error(f"Error '{e}' while attempting to write file: {member.file_name}")
            continue

        logger.info(f"Extracted: {output_path}")
        written += 1

    return written


def save_index(filepath, archive_path, archive_size: int, entries: List[TocEntry]):
    """Save the decoded table of contents as JSON"""
    index_data = {
        'archive': str(archive_path),
        'entry_count': len(entries),
        'file_size': archive_size,
        'entries': [entry._asdict() for entry in entries],
    }
    with open(filepath, 'w') as f:
        json.dump(index_data, f, indent=2)


def load_archive(archive_path, game: Optional[GameType] = None,
                 overrides: Optional[Mapping[int, str]] = None) -> Tuple[bytes, List[TocEntry]]:
    """
    Read an archive and decode its table of contents.

    Returns:
        Tuple of (whole archive buffer, TOC entries)
    """
    if game is None:
        game = identify_game(archive_path)
    logger.debug(f"Game variant for {archive_path}: {game.name}")

    buffer = read_archive(archive_path)
    file_count, toc = read_header(buffer)
    entries = decode_toc(toc, file_count, game, overrides)
    logger.info(f"Found {len(entries)} entries")
    return buffer, entries


def extract_archive(archive_path, buffer: bytes, entries: List[TocEntry], output=None,
                    workers: int = 1, xor_decode: bool = True) -> int:
    """
    Extract, decrypt and write the members of an already decoded archive.

    Returns:
        Number of members written
    """
    extract_dir = setup_extract_location(archive_path, output)
    members = extract_members(buffer, entries, workers)
    if xor_decode:
        members = decrypt_members(members, workers)

    return write_members(members, extract_dir)


def unpack_archive(archive_path, output=None, game: Optional[GameType] = None,
                   overrides: Optional[Mapping[int, str]] = None,
                   workers: int = 1, xor_decode: bool = True) -> int:
    """
    Decode, extract, decrypt and write every member of a CC archive.

    Raises:
        OSError: The archive cannot be read
        CCArchiveError: The table of contents is truncated or corrupt

    Returns:
        Number of members written
    """
    buffer, entries = load_archive(archive_path, game, overrides)
    return extract_archive(archive_path, buffer, entries, output, workers, xor_decode)


def main(argv=None):
    parser = argparse.ArgumentParser(description='Extract files from World of Xeen CC archives')
    parser.add_argument('archive', help='Input CC archive file')
    parser.add_argument('--output', '-o', help='Output directory (default: <archive>_extracted)')
    parser.add_argument('--game', '-g', choices=[g.value for g in GameType],
                       help='Game variant for file names (default: guessed from archive name)')
    parser.add_argument('--filename-map', help='JSON file mapping hex IDs to filenames')
    parser.add_argument('--index', help='Save index to JSON file')
    parser.add_argument('--list', action='store_true', help='List contents without extracting')
    parser.add_argument('--no-xor', action='store_true', help='Do not XOR-decode member payloads (default decodes)')
    parser.add_argument('--workers', '-w', type=int, default=1,
                       help='Threads used to extract and decode members')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')

    args = parser.parse_args(argv)

    if args.workers < 1:
        parser.error('--workers must be at least 1')

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    archive_path = Path(args.archive)
    game = GameType(args.game) if args.game else None

    overrides = None
    if args.filename_map:
        overrides = load_manual_mappings(args.filename_map)
        logger.info(f"Loaded {len(overrides)} filename mappings from {args.filename_map}")

    try:
        logger.info(f"Parsing CC archive: {archive_path}")
        buffer, entries = load_archive(archive_path, game, overrides)

        if args.index:
            save_index(args.index, archive_path, len(buffer), entries)
            logger.info(f"Index saved to: {args.index}")

        if args.list:
            print(f"{'ID':>4} {'Offset':>8} {'Size':>8} {'Filename':<20}")
            print("-" * 50)
            for entry in entries:
                print(f"{entry.file_id:04X} {entry.file_offset:8} {entry.file_length:8} {entry.file_name}")
            return 0

        count = extract_archive(archive_path, buffer, entries, args.output,
                                workers=args.workers, xor_decode=not args.no_xor)
    except OSError as e:
        logger.error(f"Error reading archive: {e}")
        return 1
    except CCArchiveError as e:
        logger.error(f"There was an issue while decrypting the file: {e}")
        return 1

    logger.info(f"Extraction complete: {count} files extracted")
    return 0


if __name__ == '__main__':
    sys.exit(main())
