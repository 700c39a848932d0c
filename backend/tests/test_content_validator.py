import httpx

from conftest import PDF_BYTES, PE_BYTES, PNG_BYTES
from docvault.services.content_validator import (
    DOCX,
    PDF,
    PNG,
    TEXT,
    XLSX,
    ContentValidator,
    check_filename,
    detect_family,
    looks_binary,
)
from docvault.services.malware_scan import HttpMalwareScanner, ScanVerdict

ZIP_BYTES = b"PK\x03\x04\x14\x00\x06\x00" + b"[Content_Types].xml" + b"\x00" * 32


class TestSignatures:
    def test_pdf_accepted(self):
        verdict = ContentValidator().validate(PDF_BYTES, PDF, "minutes.pdf")
        assert verdict.accepted
        assert verdict.detected_content_type == PDF
        assert verdict.signature.startswith("25504446")
        assert verdict.warnings == []

    def test_content_type_parameters_ignored(self):
        verdict = ContentValidator().validate(PDF_BYTES, "Application/PDF; charset=binary", "minutes.pdf")
        assert verdict.accepted

    def test_zero_byte_file_rejected(self):
        verdict = ContentValidator().validate(b"", PDF, "empty.pdf")
        assert not verdict.accepted
        assert verdict.reasons == ["File is empty"]

    def test_executable_renamed_to_pdf_rejected(self):
        verdict = ContentValidator().validate(PE_BYTES, PDF, "report.pdf")
        assert not verdict.accepted
        assert verdict.is_executable
        assert any("executable" in r for r in verdict.reasons)

    def test_mismatched_signature_rejected(self):
        verdict = ContentValidator().validate(PNG_BYTES, PDF, "photo.pdf")
        assert not verdict.accepted
        assert verdict.detected_content_type == PNG

    def test_office_family_shares_zip_signature(self):
        assert set(detect_family(ZIP_BYTES)) == {DOCX, XLSX}
        verdict = ContentValidator().validate(ZIP_BYTES, XLSX, "budget.xlsx")
        assert verdict.accepted
        assert verdict.detected_content_type == XLSX

    def test_unsupported_type_rejected(self):
        verdict = ContentValidator().validate(ZIP_BYTES, "application/zip", "archive.zip")
        assert not verdict.accepted
        assert "not supported" in verdict.reasons[0]

    def test_tiny_binary_payload_rejected(self):
        verdict = ContentValidator().validate(b"%PD", PDF, "tiny.pdf")
        assert not verdict.accepted

    def test_unrecognised_signature_is_a_warning(self):
        verdict = ContentValidator().validate(b"\x01\x02\x03\x04\x05\x06", PDF, "odd.pdf")
        assert verdict.accepted
        assert any("Could not verify" in w for w in verdict.warnings)


class TestTextHeuristics:
    def test_plain_text_accepted(self):
        verdict = ContentValidator().validate(b"Agenda\n1. Budget\n2. Roof repairs\n", TEXT, "agenda.txt")
        assert verdict.accepted
        assert verdict.detected_content_type == TEXT
        assert verdict.warnings == []

    def test_binary_declared_as_text_warns(self):
        data = bytes(range(256)) * 4
        assert looks_binary(data)
        verdict = ContentValidator().validate(data, TEXT, "notes.txt")
        assert verdict.accepted
        assert any("binary" in w for w in verdict.warnings)

    def test_signature_in_text_warns(self):
        verdict = ContentValidator().validate(PDF_BYTES, TEXT, "notes.txt")
        assert verdict.accepted
        assert verdict.detected_content_type == PDF
        assert any("signature indicates" in w for w in verdict.warnings)


class TestFilenames:
    def test_double_extension_rejected(self):
        verdict = ContentValidator().validate(PDF_BYTES, PDF, "invoice.pdf.exe")
        assert not verdict.accepted
        assert any("double extension" in r for r in verdict.reasons)

    def test_dangerous_penultimate_extension_rejected(self):
        reasons, _ = check_filename("invoice.exe.pdf", PDF)
        assert reasons

    def test_double_extension_with_trailing_space_rejected(self):
        reasons, _ = check_filename("invoice.pdf.exe ", PDF)
        assert any("double extension" in r for r in reasons)

    def test_double_extension_with_trailing_dot_rejected(self):
        reasons, _ = check_filename("invoice.pdf.exe.", PDF)
        assert any("double extension" in r for r in reasons)

    def test_padded_extension_segment_rejected(self):
        reasons, _ = check_filename("invoice.pdf. exe", PDF)
        assert any("double extension" in r for r in reasons)

    def test_trailing_space_on_safe_name_accepted(self):
        reasons, warnings = check_filename("minutes.pdf ", PDF)
        assert reasons == []
        assert warnings == []

    def test_embedded_double_dot_accepted(self):
        reasons, warnings = check_filename("Q3..final.pdf", PDF)
        assert reasons == []
        assert warnings == []

    def test_dot_dot_segments_rejected(self):
        for name in ("..", "..minutes.pdf", "minutes.pdf.."):
            reasons, _ = check_filename(name, PDF)
            assert any("traversal" in r for r in reasons), name

    def test_traversal_rejected(self):
        reasons, _ = check_filename("../../etc/passwd.pdf", PDF)
        assert any("traversal" in r for r in reasons)

    def test_reserved_characters_rejected(self):
        reasons, _ = check_filename('minutes<2024>.pdf', PDF)
        assert reasons

    def test_hidden_file_rejected(self):
        reasons, _ = check_filename(".htaccess", TEXT)
        assert reasons

    def test_reserved_device_name_rejected(self):
        reasons, _ = check_filename("con.pdf", PDF)
        assert any("reserved device" in r for r in reasons)

    def test_overlong_name_rejected(self):
        reasons, _ = check_filename("a" * 252 + ".pdf", PDF)
        assert any("255" in r for r in reasons)

    def test_extension_mismatch_is_a_warning(self):
        reasons, warnings = check_filename("minutes.doc", PDF)
        assert reasons == []
        assert warnings


class TestEmbeddedContent:
    def test_pdf_javascript_flagged(self):
        data = PDF_BYTES + b"<< /S /JavaScript /JS (app.alert(1)) >>"
        verdict = ContentValidator().validate(data, PDF, "form.pdf")
        assert verdict.accepted
        assert verdict.has_embedded_content
        assert verdict.security_metadata()["has_embedded_content"] is True

    def test_office_macros_flagged(self):
        data = ZIP_BYTES + b"word/vbaProject.bin"
        verdict = ContentValidator().validate(data, DOCX, "letter.docx")
        assert verdict.accepted
        assert verdict.has_embedded_content


class TestMalwareScanning:
    def _scanner(self, handler):
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return HttpMalwareScanner("http://scanner.test/scan", client=client)

    def test_clean_scan_recorded(self):
        scanner = self._scanner(lambda request: httpx.Response(200, json={"status": "clean"}))
        verdict = ContentValidator(scanner=scanner).validate(PDF_BYTES, PDF, "minutes.pdf")
        assert verdict.accepted
        assert verdict.scan.verdict == ScanVerdict.CLEAN
        assert verdict.security_metadata()["malware_scan"]["verdict"] == "clean"

    def test_infected_rejected(self):
        scanner = self._scanner(
            lambda request: httpx.Response(200, json={"status": "infected", "threats": ["EICAR-Test-File"]})
        )
        verdict = ContentValidator(scanner=scanner).validate(PDF_BYTES, PDF, "minutes.pdf")
        assert not verdict.accepted
        assert "EICAR-Test-File" in verdict.reasons[0]

    def test_single_threat_string(self):
        scanner = self._scanner(lambda request: httpx.Response(200, json={"threats": "EICAR-Test-File"}))
        result = scanner.scan(PDF_BYTES, "minutes.pdf")
        assert result.verdict == ScanVerdict.INFECTED
        assert result.threats == ["EICAR-Test-File"]

    def test_scanner_outage_fails_open(self):
        scanner = self._scanner(lambda request: httpx.Response(503))
        verdict = ContentValidator(scanner=scanner, scan_fail_open=True).validate(PDF_BYTES, PDF, "minutes.pdf")
        assert verdict.accepted
        assert verdict.scan.verdict == ScanVerdict.UNKNOWN
        assert any("Malware scan warning" in w for w in verdict.warnings)

    def test_scanner_outage_fails_closed(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        verdict = ContentValidator(scanner=self._scanner(refuse), scan_fail_open=False).validate(
            PDF_BYTES, PDF, "minutes.pdf"
        )
        assert not verdict.accepted
        assert "Malware scan unavailable" in verdict.reasons[0]

    def test_scanner_not_called_after_rejection(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"status": "clean"})

        verdict = ContentValidator(scanner=self._scanner(handler)).validate(PE_BYTES, PDF, "report.pdf")
        assert not verdict.accepted
        assert calls == []
