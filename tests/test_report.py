import pytest

from metbreed.ammi import performs_ammi
from metbreed.anova import anova_ind
from metbreed.config import settings
from metbreed.correlation import lpcor
from metbreed.report import print_report, render
from metbreed.stability import fox


def test_print_report_writes_ammi_table_to_stdout(trial, capsys):
    model = performs_ammi(trial, "ENV", "GEN", "REP", "GY", verbose=False)
    assert print_report(model) is None
    out = capsys.readouterr().out
    assert "Variable GY" in out
    assert "AMMI analysis table" in out
    assert "PC1" in out


def test_print_report_exports_text_file(trial, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "EXPORT_DIR", str(tmp_path))
    result = anova_ind(trial, "ENV", "GEN", "REP", "GY", verbose=False)
    path = print_report(result, export=True, file_name="anova")
    assert path == tmp_path / "anova.txt"
    content = path.read_text()
    assert "Within-environment ANOVA results" in content
    assert "MSRratio" in content


def test_print_report_default_file_name(trial, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "EXPORT_DIR", str(tmp_path))
    path = print_report(fox(trial, "ENV", "GEN", "GY", verbose=False), export=True)
    assert path.name == "Fox print.txt"


def test_render_respects_significant_digits(trial):
    text = render(lpcor(trial, columns=["GY", "HM"]), digits=2)
    assert "Linear and partial correlation coefficients" in text
    assert "GY x HM" in text


def test_render_rejects_unknown_objects():
    with pytest.raises(TypeError):
        render(object())
