"""Tests for spreadsheet reading/writing and validation exports."""

import io

import pytest
from openpyxl import load_workbook

from conftest import QCM_HEADERS, QROC_HEADERS, make_xlsx, qcm_row, qroc_row
from medqbank.core.exceptions import BadRequestError
from medqbank.services.reports import (
    bad_file_name,
    build_bad_workbook,
    build_good_workbook,
    build_text_report,
    good_file_name,
    report_file_name,
)
from medqbank.services.row_classifier import classify_workbook
from medqbank.services.workbook import cell_to_str, check_upload, read_workbook


def _load(content: bytes):
    return load_workbook(io.BytesIO(content))


def test_cell_to_str():
    assert cell_to_str(None) == ""
    assert cell_to_str(12.0) == "12"
    assert cell_to_str(1.5) == "1.5"
    assert cell_to_str("  texte ") == "texte"


def test_read_xlsx_canonicalizes_headers_and_keeps_line_numbers():
    data = make_xlsx({"QCM": (QCM_HEADERS, [qcm_row(), [], qcm_row(number=2)])})
    sheets = read_workbook(data, "banque.xlsx")
    assert len(sheets) == 1
    sheet = sheets[0]
    assert "texte de la question" in sheet.headers
    assert "option a" in sheet.headers
    # Пустая строка пропускается, но нумерация строк файла сохраняется
    assert [r.line for r in sheet.rows] == [2, 4]
    assert sheet.rows[1].get("question n") == "2"


def test_read_csv_with_semicolons():
    content = (
        "Matière;Cours;Texte de la question;Réponse;Explication\n"
        "Biochimie;Glycolyse;Enzyme limitante ?;PFK-1;Régulée par ATP\n"
    ).encode("utf-8")
    sheet = read_workbook(content, "export.csv")[0]
    assert sheet.name == "export"
    assert sheet.rows[0].get("reponse") == "PFK-1"
    assert sheet.rows[0].get("matiere") == "Biochimie"


def test_read_csv_falls_back_to_cp1252():
    content = "Matière,Cours\nPhysiologie,Système cardiaque\n".encode("cp1252")
    sheet = read_workbook(content, "legacy.csv")[0]
    assert sheet.headers == ["matiere", "cours"]
    assert sheet.rows[0].get("cours") == "Système cardiaque"


def test_invalid_workbook_is_rejected():
    with pytest.raises(BadRequestError):
        read_workbook(b"not a spreadsheet at all", "broken.xlsx")


def test_legacy_xls_is_rejected_with_hint():
    with pytest.raises(BadRequestError) as exc:
        read_workbook(b"\xd0\xcf\x11\xe0 binary", "old.xls")
    assert "xlsx" in exc.value.detail


def test_check_upload():
    check_upload("bank.xlsx", None, 10)
    check_upload("export", "text/csv", 10)
    with pytest.raises(BadRequestError, match="Invalid file type"):
        check_upload("notes.pdf", "application/pdf", 10)
    with pytest.raises(BadRequestError, match="empty"):
        check_upload("bank.xlsx", None, 0)
    with pytest.raises(BadRequestError, match="Maximum size is 50MB"):
        check_upload("bank.xlsx", None, 51 * 1024 * 1024)


def test_file_names():
    assert good_file_name("Banque PCEM1.xlsx") == "Banque PCEM1-valide.xlsx"
    assert bad_file_name("Banque PCEM1.xlsx") == "Banque PCEM1-erreurs.xlsx"
    assert report_file_name("dir/Banque.csv") == "validation_report_Banque.txt"


def test_good_workbook_has_one_sheet_per_type():
    data = make_xlsx({
        "QCM": (QCM_HEADERS, [qcm_row()]),
        "QROC": (QROC_HEADERS, [qroc_row()]),
    })
    result = classify_workbook(read_workbook(data, "bank.xlsx"))
    wb = _load(build_good_workbook(result.good))
    assert wb.sheetnames == ["qcm", "qroc"]
    headers = [c.value for c in wb["qcm"][1]]
    assert headers[:3] == ["matiere", "cours", "question n"]
    assert wb["qroc"].cell(row=2, column=headers.index("reponse") + 1).value == "Insuline"


def test_bad_workbook_lists_reason_and_original_values():
    data = make_xlsx({"QCM": (QCM_HEADERS, [qcm_row(answer="")])})
    result = classify_workbook(read_workbook(data, "bank.xlsx"))
    ws = _load(build_bad_workbook(result.bad))["Erreurs"]
    header = [c.value for c in ws[1]]
    assert header[:3] == ["sheet", "row", "reason"]
    row = [c.value for c in ws[2]]
    assert row[0] == "QCM"
    assert row[1] == 2
    assert row[2] == "MCQ missing correct answer (A-E)"
    assert row[header.index("matiere")] == "Physiologie"


def test_export_without_rows_fails():
    with pytest.raises(BadRequestError, match="No data to export"):
        build_good_workbook([])
    with pytest.raises(BadRequestError, match="No data to export"):
        build_bad_workbook([])


def test_text_report_contains_totals_and_reason_histogram():
    data = make_xlsx({"QCM": (QCM_HEADERS, [qcm_row(), qcm_row(), qcm_row(number=3, explanation="")])})
    result = classify_workbook(read_workbook(data, "bank.xlsx"))
    report = build_text_report("bank.xlsx", result)
    assert report.startswith("Classic Validation Report")
    assert "Total rows: 3" in report
    assert "Valid rows: 1" in report
    assert "Rows with errors: 2" in report
    assert "  - Duplicate in file: 1" in report
    assert "  - MCQ missing explanation: 1" in report
