#!/usr/bin/env python3
"""
World of Xeen Filename Mapper

Identifies which game a CC archive belongs to and maps the 16-bit file IDs
stored in its table of contents back to readable filenames.

The IDs are the engine's filename hash, so every table below is built from
plain filenames at import time and is read-only afterwards.
"""

import argparse
import enum
import json
import logging
import sys
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s', stream=sys.stdout)
logger = logging.getLogger(__name__)

UNKNOWN_NAME_PREFIX = "UNKNOWN_FILE"


class GameType(enum.Enum):
    """Game variants that ship CC archives"""

    CLOUDS = "clouds"
    DARKSIDE = "darkside"
    SWORDS = "swords"
    INTRO = "intro"
    UNKNOWN = "unknown"


# Archive file stem (lower case) -> game variant
_GAME_STEMS = MappingProxyType({
    "xeen": GameType.CLOUDS,
    "dark": GameType.DARKSIDE,
    "swrd": GameType.SWORDS,
    "intro": GameType.INTRO,
})


def identify_game(archive_path) -> GameType:
    """
    Work out the game variant from the archive's file name.

    Args:
        archive_path: Path to the CC archive

    Returns:
        Matching GameType, or GameType.UNKNOWN for an unrecognised stem
    """
    return _GAME_STEMS.get(Path(archive_path).stem.lower(), GameType.UNKNOWN)


def convert_name_to_id(filename: str) -> int:
    """
    Convert a filename to a 16-bit ID using the same algorithm as the game.

    Args:
        filename: The filename to convert

    Returns:
        16-bit ID for the filename
    """
    name = filename.upper()

    # Check if it's a direct hex number
    if len(name) == 4:
        try:
            return int(name, 16)
        except ValueError:
            pass

    total = ord(name[0])
    for c in name[1:]:
        # Rotate the bits in 'total' right 7 places, then add the next character
        total = (total & 0x007F) << 9 | (total & 0xFF80) >> 7
        total += ord(c)

    return total & 0xFFFF


def maze_filenames(map_ids: Iterable[int]) -> List[str]:
    """Maze data, monster, event, header and text files for a range of maps"""
    filenames = []
    for map_id in map_ids:
        prefix = 'X' if map_id >= 100 else '0'
        for stem, ext in (("MAZE", "DAT"), ("MAZE", "MOB"), ("MAZE", "EVT"),
                          ("AAZE", "HED"), ("AAZE", "TXT")):
            filenames.append(f"{stem}{prefix}{map_id:03d}.{ext}")
    return filenames


def sprite_filenames(sprite_ids: Iterable[int]) -> List[str]:
    """Monster, attack, object and picture sprites"""
    return [f"{sprite_id:03d}.{ext}"
            for sprite_id in sprite_ids
            for ext in ("MON", "ATT", "OBJ", "PIC")]


# Files found in XEEN.CC (Clouds of Xeen)
CLOUDS_FILES = [
    "XEEN.MON", "XEENPIC.DAT", "ANIMINFO.CLD", "MONSTERS.CLD", "WALLPICS.CLD",
    "XEENMIRR.TXT", "SPELLS.XEN", "MAE.XEN", "FNT", "MAINBACK.RAW",
    "BLANK.RAW", "BOX.VGA", "SPECIAL.BIN", "SKYMAIN.PAL",
    "OUT0.SPL", "OUT1.SPL", "OUT2.SPL", "OUT3.SPL", "OUT4.SPL", "OUT5.SPL",
    "CLICK.VOC", "DOOR.VOC", "CAST.VOC", "PADSPELL.VOC", "WHOOSH.VOC",
    "EXPLOSIO.VOC", "CRASH.VOC", "RUMBLE.VOC",
] + [f"XEEN{i:04d}.TXT" for i in range(1, 11)]

# Files found in DARK.CC (Darkside of Xeen)
DARKSIDE_FILES = [
    "DARK.DAT", "DARK.MON", "DARKPIC.DAT", "DARKMIRR.TXT", "ANIMINFO.CLD",
    "MONSTERS.CLD", "WALLPICS.CLD", "SPELLS.XEN", "MAE.XEN", "FNT",
    "MAINBACK.RAW", "BLANK.RAW", "BOX.VGA", "SPECIAL.BIN",
    "SCF28.END", "SCG28.END", "SCH28.END", "SCI28.END", "SCJ28.END", "SCK28.END",
    "SC29A.END", "SC29B.END", "SC29C.END", "SC29D.END", "SC29E.END", "SC29F.END",
    "SC050001.RAW", "SC070001.RAW", "SC090001.RAW", "SC170001.RAW",
    "SC180001.RAW", "SC190001.RAW", "SC230001.RAW", "SC250001.RAW",
    "SC260001.RAW", "SC270001.RAW", "SC290001.RAW",
    "CLICK.VOC", "DOOR.VOC", "CAST.VOC", "PADSPELL.VOC", "WINDSTOR.VOC",
    "GASCOMPR.VOC",
]

# Files found in INTRO.CC (Darkside opening sequence)
INTRO_FILES = [
    "TITLE2.INT", "TITLE2A.INT", "TITLE2B.INT", "TITLE2C.INT", "TITLE2D.INT",
    "TITLE2E.INT", "TITLE2F.INT", "TITLE2G.INT", "TITLE2H.INT", "TITLE2I.INT",
    "TITLE2B.RAW", "KLUDGE.INT", "WORLD.RAW", "WORLD0.INT", "WORLD1.INT",
    "WORLD2.INT", "SCENE1.RAW", "SCENE2-B.RAW", "SCENE4.RAW", "SCENE4-1.RAW",
    "SCENE12.RAW", "SKYMAIN.RAW", "SKYMAIN.PAL", "TWRSKY1.RAW", "TABLMAIN.RAW",
    "FOURA.RAW", "EG100001.RAW", "EG140001.RAW", "EG250001.RAW", "EG250001.PAL",
    "EG270001.RAW", "EG23PRT2.RAW",
    "CUBE.EG2", "HANDS.EG2", "SC02.EG2", "SC06.EG2", "SC10.EG2", "SC13.EG2",
    "SC14.EG2", "SC17.EG2", "SC20A.EG2", "SC20B.EG2", "SC20C.EG2", "SC20D.EG2",
    "SC22A.EG2", "SC22B.EG2", "SC23A.EG2", "SC23B.EG2", "SC23C.EG2",
    "SC23D.EG2", "SC23E.EG2", "SC23F.EG2", "SC23G.EG2", "SC23H.EG2",
    "SC24.EG2", "SC25.EG2", "SC261A.EG2", "SC261B.EG2", "SC262.EG2",
    "SC263.EG2", "SC264.EG2", "SC27.EG2", "SC3A.EG2", "SC3B1.EG2", "SC3B2.EG2",
    "STAFF.EG2", "TOWER1.EG2", "TOWER2.EG2",
    "DREAMS2.VOC", "CORAK2.VOC", "YES1.VOC", "NOWRE1.VOC", "NORDO2.VOC",
    "READY2.VOC", "FIGHT2.VOC", "FAIL1.VOC", "ADMIT2.VOC", "IDO2.VOC",
    "WHAT3.VOC", "WHOOSH.VOC", "CLICK.VOC", "EXPLOSIO.VOC", "WINDSTOR.VOC",
    "GASCOMPR.VOC", "CAST.VOC", "PADSPELL.VOC", "RUMBLE.VOC", "CRASH.VOC",
    "DOOR.VOC",
]


def build_mappings(*filename_groups: Iterable[str]) -> Mapping[int, str]:
    """
    Hash every filename into a read-only ID -> filename table.

    Earlier groups win when two names hash to the same ID, so known files
    should be passed before the generated patterns.
    """
    mappings: Dict[int, str] = {}
    for group in filename_groups:
        for filename in group:
            mappings.setdefault(convert_name_to_id(filename), filename)
    return MappingProxyType(mappings)


# SWORDS has no known table yet and UNKNOWN archives have nothing to match
FILE_NAMES: Mapping[GameType, Mapping[int, str]] = MappingProxyType({
    GameType.CLOUDS: build_mappings(
        CLOUDS_FILES, maze_filenames(range(1, 100)), sprite_filenames(range(0, 200))),
    GameType.DARKSIDE: build_mappings(
        DARKSIDE_FILES, maze_filenames(range(50, 200)), sprite_filenames(range(0, 200))),
    GameType.INTRO: build_mappings(INTRO_FILES),
    GameType.SWORDS: MappingProxyType({}),
    GameType.UNKNOWN: MappingProxyType({}),
})


def get_file_names(game: GameType) -> Mapping[int, str]:
    """Return the read-only ID -> filename table for a game variant"""
    return FILE_NAMES[game]


def unknown_file_name(file_id: int) -> str:
    return f"{UNKNOWN_NAME_PREFIX}{file_id}"


def resolve_file_name(file_id: int, game: GameType,
                      overrides: Optional[Mapping[int, str]] = None) -> str:
    """
    Look up the filename for a TOC file ID.

    Never fails: IDs missing from the table get a generated
    ``UNKNOWN_FILE<id>`` name and a warning is logged.

    Args:
        file_id: 16-bit ID from the table of contents
        game: Game variant selecting the built-in table
        overrides: Optional user mappings checked before the built-in table

    Returns:
        Filename to write the member to
    """
    if overrides and file_id in overrides:
        return overrides[file_id]

    filename = FILE_NAMES[game].get(file_id)
    if filename is None:
        logger.warning(f"Unknown file name for ID {file_id} ({file_id:04X})")
        return unknown_file_name(file_id)
    return filename


def load_manual_mappings(filepath) -> Dict[int, str]:
    """Load manual filename mappings from a JSON file ({"hex id": "name"})"""
    try:
        with open(filepath, 'r') as f:
            data = json.load(f)
            # Convert string keys to integers
            mappings = {int(k, 16): v for k, v in data.items()}
    except FileNotFoundError:
        logger.warning(f"Manual mappings file not found: {filepath}")
        return {}
    except (ValueError, AttributeError) as e:
        logger.warning(f"Could not load manual mappings from {filepath}: {e}")
        return {}

    # Names become output paths, so anything but a non-empty string is unusable
    for file_id, name in list(mappings.items()):
        if not isinstance(name, str) or not name:
            logger.warning(f"Ignoring mapping {file_id:04X} in {filepath}: {name!r} is not a file name")
            del mappings[file_id]

    return mappings


def save_mappings(mappings: Mapping[int, str], filepath):
    """Save filename mappings to a JSON file"""
    # Convert integer keys to hex strings for better readability
    output_data = {f"{k:04X}": v for k, v in mappings.items()}

    with open(filepath, 'w') as f:
        json.dump(output_data, f, indent=2, sort_keys=True)


def analyze_cc_archive(filepath, game: GameType,
                       mappings: Mapping[int, str]) -> Dict[str, List[int]]:
    """Analyze a CC archive and show which IDs have known filenames"""
    from xeencc_unpack import decode_toc, read_archive, read_header

    file_count, toc = read_header(read_archive(filepath))
    entries = decode_toc(toc, file_count, game, mappings)

    categorized = {
        'known': [],
        'unknown': []
    }
    for entry in entries:
        if entry.file_id in mappings:
            categorized['known'].append(entry.file_id)
        else:
            categorized['unknown'].append(entry.file_id)

    return categorized


def main(argv=None):
    parser = argparse.ArgumentParser(description='Generate filename mappings for World of Xeen CC archives')
    parser.add_argument('--game', '-g', choices=[g.value for g in GameType],
                       help='Game variant to dump (default: all known variants)')
    parser.add_argument('--output', '-o', default='filename_mappings.json',
                       help='Output JSON file for mappings')
    parser.add_argument('--manual', '-m', help='Manual mappings JSON file to merge')
    parser.add_argument('--analyze', '-a', help='Analyze a CC archive file')
    parser.add_argument('--list-unknown', action='store_true',
                       help='List unknown IDs when analyzing')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')

    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.game:
        games = [GameType(args.game)]
    elif args.analyze:
        games = [identify_game(args.analyze)]
    else:
        games = [GameType.CLOUDS, GameType.DARKSIDE, GameType.INTRO]

    mappings: Dict[int, str] = {}
    for game in games:
        # First variant wins for IDs shared between games
        for file_id, filename in get_file_names(game).items():
            mappings.setdefault(file_id, filename)
        logger.debug(f"{game.name}: {len(get_file_names(game))} mappings")

    if args.manual:
        manual_mappings = load_manual_mappings(args.manual)
        mappings.update(manual_mappings)
        logger.info(f"Added {len(manual_mappings)} manual mappings from {args.manual}")

    logger.info(f"Saving {len(mappings)} mappings to {args.output}")
    save_mappings(mappings, args.output)

    if args.analyze:
        logger.info(f"Analyzing CC archive: {args.analyze}")
        try:
            categorized = analyze_cc_archive(args.analyze, games[0], mappings)
        except (OSError, ValueError) as e:
            logger.error(f"Error analyzing CC archive: {e}")
            return 1

        print(f"Known files: {len(categorized['known'])}")
        print(f"Unknown files: {len(categorized['unknown'])}")

        if categorized['known']:
            print("\nKnown files:")
            for entry_id in sorted(categorized['known']):
                print(f"  {entry_id:04X} -> {mappings[entry_id]}")

        if args.list_unknown and categorized['unknown']:
            print("\nUnknown files:")
            for entry_id in sorted(categorized['unknown']):
                print(f"  {entry_id:04X}")

    return 0


if __name__ == '__main__':
    exit(main())
