"""Tests for filename resolution (folio/filenames.py)."""
from folio.filenames import derive_name_from_variables, resolve_filename, split_name


class TestSplitName:
    def test_last_dot_wins(self):
        assert split_name("report.final.pdf") == ("report.final", ".pdf")

    def test_no_extension(self):
        assert split_name("README") == ("README", "")

    def test_leading_dot_is_not_extension(self):
        assert split_name(".env") == (".env", "")


# ── auto naming ───────────────────────────────────────────────────────────────

class TestDeriveName:
    def test_full_name(self):
        variables = {"date": "2024-03-02", "issuer": "Acme Corp", "document_type": "invoice", "amount": "$42.50"}
        assert derive_name_from_variables(variables) == "2024-03-02_Acme-Corp_invoice_$42.50"

    def test_issuer_punctuation_collapses(self):
        assert derive_name_from_variables({"issuer": "  O'Brien & Sons, Ltd. "}) == "O-Brien-Sons-Ltd"

    def test_document_type_spaces_become_dashes(self):
        assert derive_name_from_variables({"document_type": "tax return (draft)"}) == "tax-return-draft"

    def test_unparseable_date_is_omitted(self):
        assert derive_name_from_variables({"date": "sometime", "issuer": "Acme"}) == "Acme"

    def test_total_amount_fallback(self):
        assert derive_name_from_variables({"issuer": "Acme", "total_amount": "1,200.00 EUR"}) == "Acme_1200.00"

    def test_nothing_usable_returns_none(self):
        assert derive_name_from_variables({"subject": "hello"}) is None


class TestResolveFilename:
    def test_original_modes(self):
        for mode in (None, "", "original"):
            assert resolve_filename(mode, {}, "scan", ".pdf") == "scan.pdf"

    def test_auto_uses_derived_name(self):
        variables = {"date": "2024-03-02", "issuer": "Acme", "document_type": "receipt"}
        assert resolve_filename("auto", variables, "scan", ".pdf") == "2024-03-02_Acme_receipt.pdf"

    def test_auto_falls_back_to_suggested_filename(self):
        variables = {"suggested_filename": "  Quarterly summary  "}
        assert resolve_filename("auto", variables, "scan", ".pdf") == "Quarterly summary.pdf"

    def test_auto_falls_back_to_original_stem(self):
        assert resolve_filename("auto", {}, "scan", ".pdf") == "scan.pdf"

    def test_auto_does_not_double_extension(self):
        variables = {"suggested_filename": "summary.pdf"}
        assert resolve_filename("auto", variables, "scan", ".pdf") == "summary.pdf"

    def test_template(self):
        assert resolve_filename("{issuer}-{year}", {"issuer": "Acme", "year": "2024"}, "scan", ".pdf") == "Acme-2024.pdf"

    def test_template_unresolved_left_literal(self):
        assert resolve_filename("{issuer}-{nope}", {"issuer": "Acme"}, "scan", ".pdf") == "Acme-{nope}.pdf"

    def test_template_reads_data_paths(self):
        data = {"vendor": {"name": "Acme"}}
        assert resolve_filename("{vendor.name}", {}, "scan", ".pdf", data) == "Acme.pdf"

    def test_template_with_suffix(self):
        assert resolve_filename("{document_type}_report", {"document_type": "audit"}, "x", ".txt") == "audit_report.txt"

    def test_auto_without_amount(self):
        variables = {"date": "2024-03-02", "issuer": "Acme Corp", "document_type": "invoice"}
        assert resolve_filename("auto", variables, "x", ".pdf") == "2024-03-02_Acme-Corp_invoice.pdf"
