import pytest

from rancher_probes.test_plan import main, read_titles, render_test_plan


def test_read_titles_skips_blank_lines(tmp_path):
    titles_file = tmp_path / "tests.txt"
    titles_file.write_text("First Test Case\n\n   \nSecond Test Case\n")

    assert read_titles(titles_file) == ["First Test Case", "Second Test Case"]


def test_read_titles_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_titles(tmp_path / "tests.txt")


def test_render_numbers_rows_and_sections():
    plan = render_test_plan(["Upgrade keeps settings", "Port 6666 closed"], priority="P1")

    assert "| 1   | P1       | [Upgrade keeps settings](#test-1)  | ⏸️ NOT TESTED YET |" in plan
    assert "| 2   | P1       | [Port 6666 closed](#test-2)  | ⏸️ NOT TESTED YET |" in plan
    assert "🚨 2 test cases... CLICK TO EXPAND!" in plan
    assert "# 2 / Port 6666 closed Status: ⏸️ NOT TESTED YET" in plan
    assert '<a name="test-2"></a>' in plan
    assert plan.index("# 1 /") < plan.index("# 2 /")
    assert plan.endswith("</details>\n")


def test_render_empty_list():
    plan = render_test_plan([])

    assert "🚨 0 test cases" in plan
    assert "# 1 /" not in plan


def test_main_writes_template(tmp_path, capsys):
    titles_file = tmp_path / "tests.txt"
    titles_file.write_text("Only Test\n")
    output = tmp_path / "plan.md"

    main([str(titles_file), "-o", str(output)])

    assert "[Only Test](#test-1)" in output.read_text()
    assert "with 1 test cases." in capsys.readouterr().out


def test_main_missing_titles_prints_example(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc_info:
        main([str(tmp_path / "tests.txt"), "-o", str(tmp_path / "plan.md")])

    assert exc_info.value.code == 1
    out = capsys.readouterr().out
    assert "First Test Case" in out
    assert not (tmp_path / "plan.md").exists()
