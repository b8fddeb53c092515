"""
ESScript command line tests.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import io

from esscript import run_cli


def write_script(tmp_path, text):
    path = tmp_path / "script.es"
    path.write_text(text, encoding="utf-8")
    return str(path)


class TestCli:

    def test_missing_script_prints_usage(self, capsys):
        assert run_cli([]) == 0
        out = capsys.readouterr().out
        assert "No script supplied!" in out
        assert "Usage:" in out

    def test_runs_script(self, tmp_path, capsysbinary):
        path = write_script(tmp_path, "// hello\n\\H>r;\n\\i>r;\nn>r;\n")
        assert run_cli([path]) == 0
        assert capsysbinary.readouterr().out == b"Hi\n"

    def test_reads_stdin(self, tmp_path, capsysbinary, monkeypatch):
        monkeypatch.setattr(sys, "stdin", io.StringIO("21\n"))
        path = write_script(tmp_path, "i>v0;\n2>*v0;\nv0>o;\n")
        assert run_cli([path]) == 0
        assert capsysbinary.readouterr().out == b"< > 42\n"

    def test_no_prompt(self, tmp_path, capsysbinary, monkeypatch):
        monkeypatch.setattr(sys, "stdin", io.StringIO("7\n"))
        path = write_script(tmp_path, "i>o;")
        assert run_cli(["--no-prompt", path]) == 0
        assert capsysbinary.readouterr().out == b"> 7\n"

    def test_unreadable_file(self, tmp_path, capsys):
        assert run_cli([str(tmp_path / "missing.es")]) == 1
        assert "Failed to read" in capsys.readouterr().err

    def test_non_utf8_bytes_in_comment(self, tmp_path, capsysbinary):
        path = tmp_path / "script.es"
        path.write_bytes(b"5>o;\n// \xff\xfe\n")
        assert run_cli([str(path)]) == 0
        assert capsysbinary.readouterr().out == b"> 5\n"

    def test_lone_carriage_return_is_not_a_line_break(self, tmp_path, capsysbinary):
        path = tmp_path / "script.es"
        path.write_bytes(b"l>o;\r// x\nl>o;\n")
        assert run_cli([str(path)]) == 0
        assert capsysbinary.readouterr().out == b"> 1\n> 2\n"

    def test_high_byte_char_literal(self, tmp_path, capsysbinary):
        path = tmp_path / "script.es"
        path.write_bytes(b"\\\xe9>r;\n")
        assert run_cli([str(path)]) == 0
        assert capsysbinary.readouterr().out == b"\xe9"

    def test_parse_error(self, tmp_path, capsys):
        path = write_script(tmp_path, "1>v0;\n1>oops;\n")
        assert run_cli([path]) == 1
        err = capsys.readouterr().err
        assert err.startswith("ParseError:")
        assert ":2 (right side)" in err

    def test_runtime_error_traceback(self, tmp_path, capsys):
        path = write_script(tmp_path, "5/v0;\n")
        assert run_cli([path, "--traceback-json"]) == 1
        err = capsys.readouterr().err
        assert "Traceback (most recent call last):" in err
        assert "DivideByZero" in err
        assert '"failing_step_index": 1' in err

    def test_memory_size_flags(self, tmp_path, capsys):
        path = write_script(tmp_path, "1>v3;\n")
        assert run_cli(["--var", "3", path]) == 1
        assert "UnclampedAccess" in capsys.readouterr().err
        assert run_cli(["-var=4", path]) == 0

    def test_cvar_flag(self, tmp_path, capsys):
        path = write_script(tmp_path, "1>c10;\n")
        assert run_cli(["--cvar", "10", path]) == 1
        assert run_cli(["--cvar", "11", path]) == 0

    def test_entry_line_zero(self, tmp_path, capsysbinary):
        path = write_script(tmp_path, "5>o;\n")
        assert run_cli(["--entry-line", "0", path]) == 0
        assert capsysbinary.readouterr().out == b""

    def test_keep_going_reports_failure(self, tmp_path, capsysbinary):
        path = write_script(tmp_path, "1>v999;\n3>o;\n")
        assert run_cli(["--keep-going", path]) == 1
        captured = capsysbinary.readouterr()
        assert captured.out == b"> 3\n"
        assert b"UnclampedAccess" in captured.err
