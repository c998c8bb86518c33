"""Tests for game identification and file name tables."""

import json
import logging

import pytest

from conftest import assemble
from xeen_filename_mapper import (
    FILE_NAMES,
    GameType,
    convert_name_to_id,
    get_file_names,
    identify_game,
    load_manual_mappings,
    main,
    resolve_file_name,
    save_mappings,
)


class TestIdentifyGame:

    @pytest.mark.parametrize("path,game", [
        ("XEEN.CC", GameType.CLOUDS),
        ("/games/xeen/DARK.CC", GameType.DARKSIDE),
        ("Swrd.cc", GameType.SWORDS),
        ("intro.CC", GameType.INTRO),
        ("xeen", GameType.CLOUDS),
        ("OTHER.CC", GameType.UNKNOWN),
        ("XEEN2.CC", GameType.UNKNOWN),
        ("", GameType.UNKNOWN),
    ])
    def test_stems(self, path, game):
        assert identify_game(path) == game


class TestConvertNameToId:

    def test_hash(self):
        # 'A' rotated right 7 bits within 16 bits, plus 'B'
        assert convert_name_to_id("AB") == 0x8242

    @pytest.mark.parametrize("filename,file_id", [
        ("FNT", 0x9D6C),
        ("fnt", 0x9D6C),
    ])
    def test_known_ids(self, filename, file_id):
        assert convert_name_to_id(filename) == file_id

    def test_case_insensitive(self):
        assert convert_name_to_id("mae.xen") == convert_name_to_id("MAE.XEN")

    def test_hex_names(self):
        assert convert_name_to_id("1A2B") == 0x1A2B

    def test_four_char_non_hex_is_hashed(self):
        assert convert_name_to_id("ABCG") != convert_name_to_id("ABCF")
        assert convert_name_to_id("ABCG") == convert_name_to_id("abcg")

    def test_sixteen_bits(self):
        assert 0 <= convert_name_to_id("ZZZZZZZZ.ZZZ") <= 0xFFFF


class TestFileNameTables:

    @pytest.mark.parametrize("game,filename", [
        (GameType.CLOUDS, "XEEN.MON"),
        (GameType.DARKSIDE, "DARK.DAT"),
        (GameType.INTRO, "TITLE2.INT"),
    ])
    def test_known_names(self, game, filename):
        assert get_file_names(game)[convert_name_to_id(filename)] == filename

    def test_generated_patterns(self):
        table = get_file_names(GameType.CLOUDS)
        assert convert_name_to_id("MAZE0001.DAT") in table
        assert convert_name_to_id("001.MON") in table
        assert convert_name_to_id("MAZEX150.DAT") in get_file_names(GameType.DARKSIDE)

    def test_fnt_in_both_games(self):
        assert get_file_names(GameType.CLOUDS)[0x9D6C] == "FNT"
        assert get_file_names(GameType.DARKSIDE)[0x9D6C] == "FNT"

    @pytest.mark.parametrize("game", [GameType.SWORDS, GameType.UNKNOWN])
    def test_no_table(self, game):
        assert len(get_file_names(game)) == 0

    def test_every_game_has_table(self):
        assert set(FILE_NAMES) == set(GameType)

    def test_read_only(self):
        with pytest.raises(TypeError):
            get_file_names(GameType.CLOUDS)[1] = "X"
        with pytest.raises(TypeError):
            FILE_NAMES[GameType.SWORDS] = {}


class TestResolveFileName:

    def test_known(self):
        file_id = convert_name_to_id("DARK.DAT")
        assert resolve_file_name(file_id, GameType.DARKSIDE) == "DARK.DAT"

    def test_unknown_fallback(self, caplog):
        table = get_file_names(GameType.DARKSIDE)
        file_id = next(i for i in range(0x10000) if i not in table)

        with caplog.at_level(logging.WARNING):
            name = resolve_file_name(file_id, GameType.DARKSIDE)

        assert name == f"UNKNOWN_FILE{file_id}"
        assert "Unknown file name" in caplog.text

    def test_unknown_game(self):
        assert resolve_file_name(42, GameType.UNKNOWN) == "UNKNOWN_FILE42"

    def test_overrides_first(self):
        file_id = convert_name_to_id("DARK.DAT")
        assert resolve_file_name(file_id, GameType.DARKSIDE, {file_id: "MINE.DAT"}) == "MINE.DAT"


class TestManualMappings:

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "map.json"
        save_mappings({0x0001: "A.BIN", 0xBEEF: "B.BIN"}, path)

        assert json.loads(path.read_text()) == {"0001": "A.BIN", "BEEF": "B.BIN"}
        assert load_manual_mappings(path) == {1: "A.BIN", 0xBEEF: "B.BIN"}

    def test_missing_file(self, tmp_path):
        assert load_manual_mappings(tmp_path / "nope.json") == {}

    def test_non_string_names_dropped(self, tmp_path, caplog):
        path = tmp_path / "map.json"
        path.write_text(json.dumps({"0001": 5, "0002": "B.BIN", "0003": "", "0004": None}))

        with caplog.at_level(logging.WARNING):
            assert load_manual_mappings(path) == {2: "B.BIN"}

        assert "Ignoring mapping 0001" in caplog.text
        assert "Ignoring mapping 0003" in caplog.text

    def test_bad_json(self, tmp_path, caplog):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        assert load_manual_mappings(path) == {}
        assert "Could not load" in caplog.text


class TestMain:

    def test_dump_game(self, tmp_path):
        output = tmp_path / "intro.json"
        assert main(["--game", "intro", "-o", str(output)]) == 0

        data = json.loads(output.read_text())
        assert data[f"{convert_name_to_id('TITLE2.INT'):04X}"] == "TITLE2.INT"
        assert len(data) == len(get_file_names(GameType.INTRO))

    def test_analyze(self, tmp_path, capsys):
        known = convert_name_to_id("DARK.DAT")
        unknown = next(i for i in range(0x10000) if i not in get_file_names(GameType.DARKSIDE))
        archive = tmp_path / "DARK.CC"
        archive.write_bytes(assemble([(known, 18, 0), (unknown, 18, 0)]))

        assert main(["-a", str(archive), "-o", str(tmp_path / "m.json"), "--list-unknown"]) == 0

        out = capsys.readouterr().out
        assert "Known files: 1" in out
        assert f"{known:04X} -> DARK.DAT" in out
        assert f"  {unknown:04X}" in out

    def test_analyze_corrupt(self, tmp_path):
        archive = tmp_path / "DARK.CC"
        archive.write_bytes(assemble([(1, 10, 0, 3)]))
        assert main(["-a", str(archive), "-o", str(tmp_path / "m.json")]) == 1
